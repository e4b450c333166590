# Configure logging FIRST before anything else
from community_engine.core.logger import logger, configure_logging, register_logger

configure_logging()

__all__ = ["logger", "configure_logging", "register_logger"]
