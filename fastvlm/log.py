"""log.py - Coloured console logging for the fastvlm CLI.

Library modules only create module loggers; nothing is configured on import.
"""

import logging

import colorlog

QUIET_LIBRARIES = ("onnxruntime", "PIL", "asyncio")


def get_logger(name="fastvlm", level=logging.INFO):
    """Attach a coloured console handler to `name` (once) and return the logger."""
    logger = logging.getLogger(name)
    logger.setLevel(level)

    if not any(isinstance(h.formatter, colorlog.ColoredFormatter) for h in logger.handlers):
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(colorlog.ColoredFormatter(
            "%(log_color)s%(asctime)s %(module)s %(levelname)-8s: %(message)s%(reset)s",
            datefmt="%Y-%m-%d %H:%M:%S",
            reset=True,
            log_colors={
                "DEBUG": "cyan",
                "INFO": "green",
                "WARNING": "yellow",
                "ERROR": "red",
                "CRITICAL": "red,bg_white",
            },
        ))
        logger.addHandler(console_handler)
    for handler in logger.handlers:
        handler.setLevel(level)

    for library in QUIET_LIBRARIES:
        logging.getLogger(library).setLevel(logging.WARNING)

    return logger
