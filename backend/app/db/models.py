from app.core.users.models import User  # noqa
from app.core.workspaces.models import Workspace  # noqa
from app.core.links.models import Link  # noqa
from app.core.folders.models import Folder  # noqa
from app.core.files.models import File  # noqa
from app.core.permissions.models import Permission  # noqa
