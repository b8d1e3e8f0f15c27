"""Permission pack catalog.

A pack is a named, versioned bundle of module/action grants plus default
enabled subviews. Packs are applied to a member by copying them into
Permission and ModuleView rows (see permission_service.apply_permission_pack).

Each role falls back to one pack (ROLE_DEFAULT_PACK) for members that have
no explicit rows for a capability.
"""

import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping

from tenant_access.core.exceptions import InvalidInputError, NotFoundError
from tenant_access.db.enums import Action, Module, Role


PACK_ID_PATTERN = re.compile(r"[a-z][a-z0-9_]{1,63}")

ALL_ACTIONS = (Action.READ, Action.CREATE, Action.UPDATE, Action.DELETE)
WRITE_ACTIONS = (Action.READ, Action.CREATE, Action.UPDATE)


@dataclass(frozen=True)
class PackEntry:
    """Grants for one module. ``subviews`` restricts the grant to those subviews."""
    module: Module
    actions: tuple[Action, ...]
    subviews: tuple[str, ...] = ()


@dataclass(frozen=True)
class PermissionPack:
    id: str
    name: str
    description: str
    icon: str
    version: int
    entries: tuple[PackEntry, ...]
    default_subviews: Mapping[Module, tuple[str, ...]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        # Catalog packs are shared process-wide; freeze the nested mapping too
        frozen = MappingProxyType({m: tuple(keys) for m, keys in self.default_subviews.items()})
        object.__setattr__(self, "default_subviews", frozen)

    def allows(self, module: Module, action: Action, subview_key: str | None = None) -> bool:
        """
        Pack default for (module, action), optionally within one subview.

        Entries that list subviews only grant inside those subviews.
        """
        entry = self.entry_for(module)
        if entry is None or action not in entry.actions:
            return False
        if subview_key is not None and entry.subviews:
            return subview_key in entry.subviews
        return True

    def entry_for(self, module: Module) -> PackEntry | None:
        for entry in self.entries:
            if entry.module == module:
                return entry
        return None

    def matrix(self) -> dict[Module, dict[Action, bool]]:
        """Full Module x Action grid; absent modules are all False."""
        return {
            module: {action: self.allows(module, action) for action in Action}
            for module in Module
        }


# =============================================================================
# Pack Catalog
# =============================================================================

_PACKS = (
    PermissionPack(
        id="admin",
        name="Administrator",
        description="Full access to all modules with management rights",
        icon="shield",
        version=1,
        entries=tuple(PackEntry(module, ALL_ACTIONS) for module in Module),
        default_subviews={
            Module.CRM: ("crm.clients", "crm.opportunities", "crm.kpis"),
            Module.PRODUCT: (
                "product.backlog", "product.epics", "product.stats",
                "product.retrospective", "product.recipe",
            ),
            Module.PROFITABILITY: (
                "profitability.overview", "profitability.byProject",
                "profitability.simulations", "profitability.resources",
            ),
            Module.DOCUMENTS: ("documents.list", "documents.upload", "documents.integrations"),
            Module.ROADMAP: ("roadmap.gantt", "roadmap.output", "roadmap.okr", "roadmap.tree"),
            Module.PROJECTS: ("projects.list", "projects.details", "projects.scope", "projects.billing"),
        },
    ),
    PermissionPack(
        id="member",
        name="Standard Member",
        description="Full read/write access on operational modules",
        icon="user",
        version=1,
        entries=(
            PackEntry(Module.CRM, WRITE_ACTIONS),
            PackEntry(Module.PROJECTS, WRITE_ACTIONS),
            PackEntry(Module.PRODUCT, WRITE_ACTIONS),
            PackEntry(Module.ROADMAP, WRITE_ACTIONS),
            PackEntry(Module.TASKS, ALL_ACTIONS),
            PackEntry(Module.NOTES, ALL_ACTIONS),
            PackEntry(Module.DOCUMENTS, WRITE_ACTIONS),
            PackEntry(Module.PROFITABILITY, (Action.READ,)),
        ),
        default_subviews={
            Module.CRM: ("crm.clients", "crm.opportunities", "crm.kpis"),
            Module.PRODUCT: (
                "product.backlog", "product.epics", "product.stats",
                "product.retrospective", "product.recipe",
            ),
            Module.PROFITABILITY: ("profitability.overview", "profitability.byProject"),
            Module.DOCUMENTS: ("documents.list", "documents.upload"),
            Module.ROADMAP: ("roadmap.gantt", "roadmap.output", "roadmap.okr", "roadmap.tree"),
            Module.PROJECTS: ("projects.list", "projects.details", "projects.scope"),
        },
    ),
    PermissionPack(
        id="guest",
        name="Guest (read-only)",
        description="Read-only access to basic modules",
        icon="eye",
        version=1,
        entries=(
            PackEntry(Module.PROJECTS, (Action.READ,)),
            PackEntry(Module.ROADMAP, (Action.READ,)),
            PackEntry(Module.TASKS, (Action.READ,)),
            PackEntry(Module.NOTES, (Action.READ,)),
            PackEntry(Module.DOCUMENTS, (Action.READ,)),
        ),
        default_subviews={
            Module.PROJECTS: ("projects.list", "projects.details"),
            Module.ROADMAP: ("roadmap.output",),
            Module.DOCUMENTS: ("documents.list",),
        },
    ),
    PermissionPack(
        id="client_portal",
        name="Client Portal",
        description="Restricted client access to authorized projects only",
        icon="building",
        version=1,
        entries=(
            PackEntry(Module.PROJECTS, (Action.READ,)),
            PackEntry(Module.ROADMAP, (Action.READ,), subviews=("roadmap.output",)),
            PackEntry(Module.DOCUMENTS, (Action.READ,)),
            PackEntry(Module.NOTES, (Action.READ,)),
        ),
        default_subviews={
            Module.PROJECTS: ("projects.details",),
            Module.ROADMAP: ("roadmap.output",),
            Module.DOCUMENTS: ("documents.list",),
        },
    ),
    PermissionPack(
        id="collaborator",
        name="Project Collaborator",
        description="Read/write access on projects, tasks and notes (no profitability)",
        icon="users",
        version=1,
        entries=(
            PackEntry(Module.PROJECTS, (Action.READ, Action.UPDATE)),
            PackEntry(Module.PRODUCT, WRITE_ACTIONS),
            PackEntry(Module.ROADMAP, (Action.READ,)),
            PackEntry(Module.TASKS, ALL_ACTIONS),
            PackEntry(Module.NOTES, ALL_ACTIONS),
            PackEntry(Module.DOCUMENTS, WRITE_ACTIONS),
        ),
        default_subviews={
            Module.PRODUCT: ("product.backlog", "product.epics", "product.stats"),
            Module.ROADMAP: ("roadmap.gantt", "roadmap.output"),
            Module.DOCUMENTS: ("documents.list", "documents.upload"),
            Module.PROJECTS: ("projects.list", "projects.details", "projects.scope"),
        },
    ),
)

PERMISSION_PACKS: Mapping[str, PermissionPack] = MappingProxyType({pack.id: pack for pack in _PACKS})

ROLE_DEFAULT_PACK: Mapping[Role, str] = MappingProxyType({
    Role.ADMIN: "admin",
    Role.MEMBER: "member",
    Role.GUEST: "guest",
})


# =============================================================================
# Helper Functions
# =============================================================================

def get_all_packs() -> list[PermissionPack]:
    return list(PERMISSION_PACKS.values())


def get_pack(pack_id: str) -> PermissionPack:
    """
    Look up a pack by id.

    Raises:
        InvalidInputError: malformed id
        NotFoundError: well-formed id that is not in the catalog
    """
    if not isinstance(pack_id, str) or not PACK_ID_PATTERN.fullmatch(pack_id):
        raise InvalidInputError(f"Malformed pack id: {pack_id!r}", field="pack_id")
    pack = PERMISSION_PACKS.get(pack_id)
    if pack is None:
        raise NotFoundError(f"Permission pack {pack_id!r} not found")
    return pack


def get_role_default_pack(role: Role) -> PermissionPack:
    return PERMISSION_PACKS[ROLE_DEFAULT_PACK[role]]
