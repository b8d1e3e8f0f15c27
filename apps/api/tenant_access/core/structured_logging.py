"""Structured logging helpers (PII-safe)."""

from typing import Any


def build_log_context(
    *,
    member_id: str | None = None,
    org_id: str | None = None,
    request_id: str | None = None,
    route: str | None = None,
    method: str | None = None,
    action_type: str | None = None,
) -> dict[str, Any]:
    """Return a PII-safe log context dict. Never pass emails or tokens."""
    context: dict[str, Any] = {}
    if member_id:
        context["member_id"] = str(member_id)
    if org_id:
        context["org_id"] = str(org_id)
    if request_id:
        context["request_id"] = request_id
    if route:
        context["route"] = route
    if method:
        context["method"] = method
    if action_type:
        context["action_type"] = action_type
    return context
