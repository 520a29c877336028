"""Logging setup: console plus an optional rotating file under monitoring.log_dir."""

import logging
import logging.handlers
from pathlib import Path

from basket_engine.core.config import Config

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def setup_logging(config: Config, to_file: bool = True) -> None:
    level = getattr(logging, config.monitoring.log_level, logging.INFO)
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if to_file:
        log_dir = Path(config.monitoring.log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        handlers.append(
            logging.handlers.RotatingFileHandler(log_dir / "basket_engine.log", maxBytes=5_000_000, backupCount=3)
        )
    logging.basicConfig(level=level, format=LOG_FORMAT, handlers=handlers, force=True)
    # The SDK's HTTP client is chatty at DEBUG
    logging.getLogger("urllib3").setLevel(max(level, logging.WARNING))
