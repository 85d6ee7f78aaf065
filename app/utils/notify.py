"""User notifications for terminal pipeline outcomes."""

from loguru import logger


class LogNotifier:
    """Surfaces notifications in the application log."""

    def notify(self, message: str, duration: float = 5.0) -> None:
        logger.info(f"[notice] {message}")
