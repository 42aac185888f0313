import logging
from typing import Any, Optional, Protocol

logger = logging.getLogger(__name__)


class NotificationSink(Protocol):
    def notify(self, event: str, payload: dict[str, Any]) -> None:
        ...


class LoggingNotificationSink:
    """Default sink; the platform's broadcast service replaces it in production."""

    def notify(self, event: str, payload: dict[str, Any]) -> None:
        logger.info("Notification %s: %s", event, payload)


class Notifier:
    """Fire-and-forget wrapper: a failing sink never fails the caller."""

    def __init__(self, sink: Optional[NotificationSink] = None):
        self.sink = sink or LoggingNotificationSink()

    def send(self, event: str, **payload: Any) -> None:
        try:
            self.sink.notify(event, payload)
        except Exception:
            logger.warning("Notification %s could not be delivered", event, exc_info=True)
