import logging
from typing import List

import notifiers.logging

from tfaction.config import Settings

LOG_FORMAT = "%(asctime)s %(name)s %(levelname)s - %(message)s"


def get_log_handlers(logger: logging.Logger, settings: Settings) -> List[logging.Handler]:
    if settings.TELEGRAM_TOKEN is None:
        return []
    handler = notifiers.logging.NotificationHandler(
        "telegram",
        defaults={
            "token": settings.TELEGRAM_TOKEN,
            "chat_id": settings.TELEGRAM_CHAT_ID,
        },
    )
    handler.setLevel(logging.WARNING)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(handler)
    return [handler]


def configure_logging(settings: Settings) -> logging.Logger:
    logging.basicConfig(format=LOG_FORMAT, level=logging.INFO)
    logging.getLogger().setLevel(settings.OVERRIDE_LOGGING)

    logger = logging.getLogger("tfaction")
    logger.setLevel(settings.OVERRIDE_LOGGING)
    if not any(
        isinstance(h, notifiers.logging.NotificationHandler) for h in logger.handlers
    ):
        get_log_handlers(logger, settings)
    return logger
