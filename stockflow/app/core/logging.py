from __future__ import annotations

import logging
import logging.config

from stockflow.app.core.config import settings

LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"


def configure_logging(level: str | None = None) -> None:
    """
    Configure le logging stdlib pour tout le package.

    Les services loggent via logging.getLogger(__name__) et passent le
    contexte métier (po_id, movement_id, actor_id...) dans `extra`.
    """
    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "default": {"format": LOG_FORMAT},
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "default",
                },
            },
            "loggers": {
                "stockflow": {
                    "handlers": ["console"],
                    "level": (level or settings.log_level).upper(),
                    "propagate": False,
                },
                # SQL trop bavard sinon
                "sqlalchemy.engine": {"level": "WARNING"},
            },
        }
    )
