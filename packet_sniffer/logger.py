# packet_sniffer/logger.py
# Centralized logging setup for the long-running capture agent.
# Every module logs through loguru's global logger; this only decides where the lines go.
import sys
from typing import Optional

from loguru import logger


def setup_logging(level: str = "INFO", log_file: Optional[str] = None,
                  rotation: str = "10 MB", retention: str = "7 days"):
    logger.remove()
    logger.add(sys.stderr, level=level, enqueue=True,
               format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{line} | {message}")
    if log_file:
        # file sink survives service restarts; loguru rotates and prunes it
        logger.add(log_file, level=level, rotation=rotation, retention=retention, enqueue=True)
    logger.info("Logger initialized at level {}", level)
    return logger
