import logging
import sys

import structlog
from pythonjsonlogger import jsonlogger

from ..config import Settings


def setup_logging(settings: Settings):
    """Structured logging setup"""

    json_formatter = jsonlogger.JsonFormatter(
        fmt="%(asctime)s %(name)s %(levelname)s %(message)s"
    )

    renderer = (
        structlog.processors.JSONRenderer()
        if settings.use_json_logs
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # Root logger gets a single stdout handler; repeated calls replace it
    logger = logging.getLogger()
    for handler in list(logger.handlers):
        if getattr(handler, "_telecare_handler", False):
            logger.removeHandler(handler)
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(json_formatter)
    handler._telecare_handler = True
    logger.addHandler(handler)
    logger.setLevel(settings.log_level.upper())

    # SQL echo stays off unless debugging the engine explicitly
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

    return structlog.get_logger()
