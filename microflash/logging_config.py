"""
Logging setup.

Plain standard-library logging, one console handler, one format. Modules
log through `logging.getLogger(__name__)`.
"""

import logging
from typing import Optional

from microflash.config import settings, yaml_config

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(level: Optional[str] = None, debug: bool = False) -> None:
    """
    Configure the root logger.

    Level precedence: explicit argument, LOG_LEVEL setting, YAML
    logging.level, INFO.
    """
    level = (
        level
        or settings.LOG_LEVEL
        or yaml_config.get("logging", {}).get("level")
        or "INFO"
    )
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT, force=True)

    # Reduce noise from HTTP and scheduler internals (unless debugging)
    if not debug:
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)
        logging.getLogger("apscheduler").setLevel(logging.WARNING)
