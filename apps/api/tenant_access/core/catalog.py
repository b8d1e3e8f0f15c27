"""Capability catalog: subview registry and default module views.

All tables here are built once at import and are read-only afterwards.
Every write boundary validates module/action/subview values through the
``parse_*`` helpers so free-form strings never reach the database.
"""

from dataclasses import dataclass
from types import MappingProxyType
from typing import Iterable, Mapping

from tenant_access.core.exceptions import InvalidInputError
from tenant_access.db.enums import Action, Module, PermissionScope, ProjectAccessLevel, Role


@dataclass(frozen=True)
class SubviewDef:
    """A finer-grained UI section within a module."""
    key: str
    module: Module
    label: str


@dataclass(frozen=True)
class DefaultViewConfig:
    """Default layout and enabled subviews for one module."""
    layout: str
    subviews_enabled: frozenset[str]

    def as_dict(self) -> dict:
        return {
            "layout": self.layout,
            "subviews_enabled": {key: True for key in sorted(self.subviews_enabled)},
        }


# =============================================================================
# Subview Registry
# =============================================================================

def _subviews(module: Module, *entries: tuple[str, str]) -> dict[str, SubviewDef]:
    return {key: SubviewDef(key, module, label) for key, label in entries}


SUBVIEW_REGISTRY: Mapping[str, SubviewDef] = MappingProxyType({
    **_subviews(
        Module.CRM,
        ("crm.clients", "Clients"),
        ("crm.opportunities", "Opportunities"),
        ("crm.kpis", "KPIs"),
    ),
    **_subviews(
        Module.PROJECTS,
        ("projects.list", "Project list"),
        ("projects.details", "Project details"),
        ("projects.scope", "Scope"),
        ("projects.billing", "Billing"),
    ),
    **_subviews(
        Module.PRODUCT,
        ("product.backlog", "Backlog"),
        ("product.epics", "Epics"),
        ("product.stats", "Statistics"),
        ("product.retrospective", "Retrospective"),
        ("product.recipe", "Acceptance testing"),
    ),
    **_subviews(
        Module.ROADMAP,
        ("roadmap.gantt", "Gantt"),
        ("roadmap.output", "Output"),
        ("roadmap.okr", "OKR"),
        ("roadmap.tree", "Tree"),
    ),
    **_subviews(
        Module.DOCUMENTS,
        ("documents.list", "Documents"),
        ("documents.upload", "Upload"),
        ("documents.integrations", "Integrations"),
    ),
    **_subviews(
        Module.PROFITABILITY,
        ("profitability.overview", "Overview"),
        ("profitability.byProject", "By project"),
        ("profitability.simulations", "Simulations"),
        ("profitability.resources", "Resources"),
    ),
})


def subviews_for_module(module: Module) -> list[str]:
    """Registered subview keys for a module, in registry order."""
    return [key for key, sub in SUBVIEW_REGISTRY.items() if sub.module == module]


# =============================================================================
# Default Module Views
# =============================================================================

_DEFAULT_LAYOUTS: dict[Module, str] = {
    Module.CRM: "table",
    Module.PROJECTS: "list",
    Module.PRODUCT: "backlog",
    Module.ROADMAP: "gantt",
    Module.TASKS: "kanban",
    Module.NOTES: "list",
    Module.DOCUMENTS: "list",
    Module.PROFITABILITY: "overview",
}

DEFAULT_VIEW_CONFIG: Mapping[Module, DefaultViewConfig] = MappingProxyType({
    module: DefaultViewConfig(
        layout=_DEFAULT_LAYOUTS[module],
        subviews_enabled=frozenset(subviews_for_module(module)),
    )
    for module in Module
})


# Requested project access level implied by an action when the caller gives none
ACTION_ACCESS_LEVEL: Mapping[Action, ProjectAccessLevel] = MappingProxyType({
    Action.READ: ProjectAccessLevel.READ,
    Action.CREATE: ProjectAccessLevel.WRITE,
    Action.UPDATE: ProjectAccessLevel.WRITE,
    Action.DELETE: ProjectAccessLevel.WRITE,
})


# =============================================================================
# Validation Helpers
# =============================================================================

def parse_module(value: str | Module) -> Module:
    if isinstance(value, Module):
        return value
    if not isinstance(value, str) or not Module.has_value(value):
        raise InvalidInputError(f"Unknown module: {value!r}", field="module")
    return Module(value)


def parse_action(value: str | Action) -> Action:
    if isinstance(value, Action):
        return value
    if not isinstance(value, str) or not Action.has_value(value):
        raise InvalidInputError(f"Unknown action: {value!r}", field="action")
    return Action(value)


def parse_role(value: str | Role) -> Role:
    if isinstance(value, Role):
        return value
    if not isinstance(value, str) or not Role.has_value(value):
        raise InvalidInputError(f"Unknown role: {value!r}", field="role")
    return Role(value)


def parse_access_level(value: str | ProjectAccessLevel) -> ProjectAccessLevel:
    if isinstance(value, ProjectAccessLevel):
        return value
    if not isinstance(value, str) or not ProjectAccessLevel.has_value(value):
        raise InvalidInputError(f"Unknown access level: {value!r}", field="access_level")
    return ProjectAccessLevel(value)


def parse_subview(module: Module, subview_key: str | None) -> str | None:
    """Validate that a subview key exists and belongs to ``module``."""
    if subview_key is None:
        return None
    sub = SUBVIEW_REGISTRY.get(subview_key)
    if sub is None:
        raise InvalidInputError(f"Unknown subview: {subview_key!r}", field="subview_key")
    if sub.module != module:
        raise InvalidInputError(
            f"Subview {subview_key!r} does not belong to module {module.value!r}",
            field="subview_key",
        )
    return subview_key


def parse_scope(value: str | PermissionScope, subview_key: str | None) -> PermissionScope:
    """Scope and subview key must agree: subview scope needs a key, module scope forbids one."""
    if not isinstance(value, PermissionScope):
        if not isinstance(value, str) or not PermissionScope.has_value(value):
            raise InvalidInputError(f"Unknown scope: {value!r}", field="scope")
        value = PermissionScope(value)
    if value == PermissionScope.SUBVIEW and not subview_key:
        raise InvalidInputError("Subview-scoped permission requires subview_key", field="subview_key")
    if value == PermissionScope.MODULE and subview_key:
        raise InvalidInputError("Module-scoped permission cannot carry subview_key", field="subview_key")
    return value


def validate_subviews_enabled(module: Module, subviews: Mapping[str, bool] | Iterable[str]) -> dict[str, bool]:
    """Normalize a subview toggle map (or key list) for ``module``."""
    if isinstance(subviews, Mapping):
        items = subviews.items()
    else:
        items = ((key, True) for key in subviews)
    result: dict[str, bool] = {}
    for key, enabled in items:
        parse_subview(module, key)
        result[key] = bool(enabled)
    return result
