# server/logging_config.py
# stdout carries the protocol, so every handler writes to stderr.
import logging.config

LOGGING_CONFIG = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "default": {
            "format": "%(asctime)s %(levelname)s %(name)s: %(message)s",
        },
    },
    "handlers": {
        "stderr": {
            "class": "logging.StreamHandler",
            "formatter": "default",
            "stream": "ext://sys.stderr",
        },
    },
    "root": {
        "handlers": ["stderr"],
        "level": "WARNING",
    },
    "loggers": {
        # chatty third-party loaders
        "diffusers": {"level": "WARNING"},
        "transformers": {"level": "WARNING"},
    },
}


def configure_logging(verbose: bool = False) -> None:
    config = dict(LOGGING_CONFIG)
    config["root"] = dict(LOGGING_CONFIG["root"], level="DEBUG" if verbose else "WARNING")
    logging.config.dictConfig(config)
