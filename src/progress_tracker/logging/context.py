import structlog

VIEW_CONTEXT_KEYS = ("view_id", "tier")


def bind_view_context(view_id: str, tier: str) -> None:
    """Tag every log line of the current context with the live view it belongs to."""
    structlog.contextvars.bind_contextvars(view_id=view_id, tier=tier)


def unbind_view_context() -> None:
    structlog.contextvars.unbind_contextvars(*VIEW_CONTEXT_KEYS)


def get_view_context() -> dict[str, str]:
    """Get the bound view id and tier, if any."""
    context = structlog.contextvars.get_contextvars()
    return {key: context[key] for key in VIEW_CONTEXT_KEYS if key in context}


def clear_context() -> None:
    """Clear all context variables."""
    structlog.contextvars.clear_contextvars()
