"""Logging configuration for the application"""
import logging

from sharekit.core.config import settings


def setup_logging(level: str = None):
    """Configure logging for the application"""
    LOG_LEVEL = (level or settings.LOG_LEVEL).upper()
    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
        force=True
    )

    # Silence noisy third-party libraries
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("urllib3.connectionpool").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


# Export commonly used loggers
# These will be created when the module is imported, after setup_logging() is called
twitter_logger = logging.getLogger("twitter")
upload_logger = logging.getLogger("upload")
security_logger = logging.getLogger("security")
cleanup_logger = logging.getLogger("cleanup")
api_access_logger = logging.getLogger("api_access")
