"""
Logging configuration.

structlog on top of the standard library logger. Development gets the
console renderer, every other environment gets one JSON object per line.
Credentials passed around by the auth flow never reach the output.
"""

import logging
import sys
import time
from typing import Any, Dict, List, Optional

import structlog
from structlog.stdlib import LoggerFactory
from structlog.types import Processor

from config import Environment, Settings

SENSITIVE_KEYS = frozenset({"password", "id_token", "idToken", "refresh_token", "refreshToken", "token", "api_key"})

# driver and client chatter stays at WARNING unless the service runs at DEBUG
QUIET_LOGGERS = ("pymongo", "urllib3")


def timestamper(logger: Any, name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Add ISO-8601 formatted timestamp to the event dict."""
    event_dict["timestamp"] = time.strftime("%Y-%m-%dT%H:%M:%S", time.gmtime())
    return event_dict


def redact_secrets(logger: Any, name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    for key in SENSITIVE_KEYS.intersection(event_dict):
        if event_dict[key]:
            event_dict[key] = "***"
    return event_dict


def service_info(settings: Settings) -> Processor:
    def add_service_info(logger: Any, name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
        event_dict["service"] = settings.PROJECT_NAME
        event_dict["version"] = settings.VERSION
        event_dict["environment"] = settings.ENVIRONMENT
        event_dict["database"] = settings.DATABASE_NAME
        return event_dict

    return add_service_info


def build_processors(settings: Settings) -> List[Processor]:
    processors: List[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        timestamper,
        service_info(settings),
        redact_secrets,
        structlog.processors.format_exc_info,
    ]
    if settings.ENVIRONMENT == Environment.DEVELOPMENT.value:
        processors.append(structlog.dev.ConsoleRenderer())
    else:
        processors.extend([
            structlog.processors.dict_tracebacks,
            structlog.processors.JSONRenderer(),
        ])
    return processors


def configure_logging(settings: Settings, log_level: Optional[str] = None) -> None:
    """
    Configure structured logging for the application.

    Args:
        settings: Application settings, used for service info and renderer choice
        log_level: Logging level to use, defaults to settings.LOG_LEVEL
    """
    level = log_level or settings.LOG_LEVEL
    level = str(getattr(level, "value", level)).upper()

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=level,
    )
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.DEBUG if level == "DEBUG" else logging.WARNING)

    structlog.configure(
        processors=build_processors(settings),
        context_class=dict,
        logger_factory=LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
