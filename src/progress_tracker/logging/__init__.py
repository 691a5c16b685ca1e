from .config import get_logger, setup_logging, setup_logging_from_settings
from .context import bind_view_context, clear_context, get_view_context, unbind_view_context

__all__ = [
    "setup_logging",
    "setup_logging_from_settings",
    "get_logger",
    "bind_view_context",
    "unbind_view_context",
    "get_view_context",
    "clear_context",
]
