import sys
from loguru import logger
from typing import Optional

CONSOLE_FORMAT = "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <level>{message}</level>"
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}"


def setup_logger(config: Optional[dict] = None, verbose: bool = False) -> None:
    """
    Configure the application logger using loguru.

    Args:
        config: Logging configuration dictionary (the `logging` section of config.yml)
        verbose: Force DEBUG level on the console sink
    """
    logger.remove()

    if config is None:
        logger.add(sys.stderr, level="DEBUG" if verbose else "INFO", format=CONSOLE_FORMAT)
        return

    level = config.get("level", "INFO")

    if config.get("console", True):
        logger.add(
            sys.stderr,
            level="DEBUG" if verbose else level,
            format=CONSOLE_FORMAT
        )

    # loguru creates the log directory on first write
    file_config = config.get("file", {})
    if file_config.get("enabled", False):
        logger.add(
            file_config.get("path", "logs/sheet2pdf_{time}.log"),
            rotation=file_config.get("rotation", "10 MB"),
            retention=file_config.get("retention", "10 days"),
            level=level,
            format=FILE_FORMAT
        )
