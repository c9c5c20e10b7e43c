import logging
import sys

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def configure_logging(level='INFO', name='chbridge'):
    """Attach a single stdout handler to the package logger."""
    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, str(level).upper(), logging.INFO))

    for handler in logger.handlers:
        if getattr(handler, '_chbridge', False):
            handler.setLevel(logger.level)
            return logger

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(logger.level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler._chbridge = True
    logger.addHandler(handler)
    return logger
