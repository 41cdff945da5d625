import logging
import logging.config

FORMAT = "%(asctime)s %(levelname)5s %(name)-20s %(message)s"


def setup_logging(level: str = "WARNING"):
    """Configure the teamcode loggers. Output goes to stderr so it never
    interleaves with the REPL's own prints on stdout."""
    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {"format": FORMAT, "datefmt": "%H:%M:%S"},
        },
        "handlers": {
            "default": {
                "class": "logging.StreamHandler",
                "formatter": "default",
                "stream": "ext://sys.stderr",
            },
        },
        "loggers": {
            "teamcode": {"handlers": ["default"], "level": level.upper(), "propagate": False},
            # SDK request logs are noisy at DEBUG
            "httpx": {"level": "WARNING"},
            "anthropic": {"level": "WARNING"},
            "openai": {"level": "WARNING"},
        },
    })
