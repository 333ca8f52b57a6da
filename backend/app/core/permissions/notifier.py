import logging
from datetime import datetime
from typing import Protocol

logger = logging.getLogger(__name__)


class CodeNotifier(Protocol):
    async def send_code(self, email: str, code: str, expires_at: datetime) -> None: ...


class LoggingCodeNotifier:
    """Stand-in for the outbound mail service. The code itself only appears at DEBUG."""

    async def send_code(self, email: str, code: str, expires_at: datetime) -> None:
        logger.info("Verification code issued to %s, expires %s", email, expires_at.isoformat())
        logger.debug("Verification code for %s: %s", email, code)


_notifier = LoggingCodeNotifier()


def get_code_notifier() -> CodeNotifier:
    return _notifier
