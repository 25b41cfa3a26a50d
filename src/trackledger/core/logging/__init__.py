from .context import get_log_context, log_context, reset_context, set_context
from .setup import JSONFormatter, configure_logging, log_event

__all__ = [
    "JSONFormatter",
    "configure_logging",
    "log_event",
    "get_log_context",
    "set_context",
    "reset_context",
    "log_context",
]
