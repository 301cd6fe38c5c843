import asyncio
from typing import Optional, Set
from loguru import logger

from mspark.services.communication.mail_service import MailService, MailTemplate


class NotificationService:
    """
    Fire-and-forget email dispatch.

    Every send runs in its own task; failures are logged and never reach the
    operation that triggered them. Call notify() only after the triggering
    database transaction has committed.
    """

    def __init__(self, mail: MailService):
        self._mail = mail
        self._tasks: Set[asyncio.Task] = set()

    def notify(self, template: MailTemplate, recipient: Optional[str]) -> Optional[asyncio.Task]:
        if not recipient:
            logger.warning(f"Skipping email '{template.subject}': no recipient")
            return None
        task = asyncio.create_task(self._deliver(template, recipient))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _deliver(self, template: MailTemplate, recipient: str) -> None:
        try:
            await self._mail.send(template, recipient)
            logger.debug(f"Email '{template.subject}' sent to {recipient}")
        except Exception as e:
            logger.error(f"Error sending email '{template.subject}' to {recipient}: {e}")

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for outstanding sends (shutdown, tests)"""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
