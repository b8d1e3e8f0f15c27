"""Static catalog tables: packs, subviews, default views, role vocabulary."""

import pytest

from tenant_access.core.catalog import (
    ACTION_ACCESS_LEVEL,
    DEFAULT_VIEW_CONFIG,
    SUBVIEW_REGISTRY,
    parse_scope,
    parse_subview,
    subviews_for_module,
    validate_subviews_enabled,
)
from tenant_access.core.exceptions import InvalidInputError, NotFoundError
from tenant_access.core.permission_packs import (
    PERMISSION_PACKS,
    ROLE_DEFAULT_PACK,
    get_all_packs,
    get_pack,
    get_role_default_pack,
)
from tenant_access.db.enums import (
    Action,
    Module,
    PermissionScope,
    ProjectAccessLevel,
    Role,
    normalize_role,
)


def test_every_role_has_a_default_pack():
    for role in Role:
        assert get_role_default_pack(role).id == ROLE_DEFAULT_PACK[role]


def test_catalog_lists_five_packs():
    ids = {pack.id for pack in get_all_packs()}
    assert ids == {"admin", "member", "guest", "client_portal", "collaborator"}


def test_pack_subviews_belong_to_their_module():
    for pack in PERMISSION_PACKS.values():
        for entry in pack.entries:
            for key in entry.subviews:
                assert SUBVIEW_REGISTRY[key].module == entry.module
        for module, keys in pack.default_subviews.items():
            for key in keys:
                assert SUBVIEW_REGISTRY[key].module == module


def test_admin_pack_grants_everything():
    matrix = get_pack("admin").matrix()
    assert all(allowed for actions in matrix.values() for allowed in actions.values())


def test_guest_pack_is_read_only():
    matrix = get_pack("guest").matrix()
    for module, actions in matrix.items():
        for action, allowed in actions.items():
            if action != Action.READ:
                assert allowed is False, (module, action)
    assert matrix[Module.CRM][Action.READ] is False
    assert matrix[Module.PROJECTS][Action.READ] is True


def test_client_portal_roadmap_limited_to_output_subview():
    pack = get_pack("client_portal")
    assert pack.allows(Module.ROADMAP, Action.READ) is True
    assert pack.allows(Module.ROADMAP, Action.READ, "roadmap.output") is True
    assert pack.allows(Module.ROADMAP, Action.READ, "roadmap.gantt") is False


@pytest.mark.parametrize("pack_id", ["Admin", "a", "has-dash", "", "x" * 70, "admin\n", " guest"])
def test_get_pack_rejects_malformed_ids(pack_id):
    with pytest.raises(InvalidInputError):
        get_pack(pack_id)


def test_get_pack_unknown_id():
    with pytest.raises(NotFoundError):
        get_pack("enterprise_plus")


def test_pack_catalog_is_read_only():
    with pytest.raises(TypeError):
        PERMISSION_PACKS["custom"] = get_pack("admin")  # type: ignore[index]


def test_pack_default_subviews_are_read_only():
    pack = get_pack("guest")
    with pytest.raises(TypeError):
        pack.default_subviews[Module.CRM] = ("crm.kpis",)  # type: ignore[index]
    assert Module.CRM not in pack.default_subviews


def test_default_views_cover_every_module():
    assert set(DEFAULT_VIEW_CONFIG) == set(Module)
    for module, config in DEFAULT_VIEW_CONFIG.items():
        assert config.subviews_enabled == frozenset(subviews_for_module(module))


def test_modules_without_subviews():
    assert subviews_for_module(Module.TASKS) == []
    assert subviews_for_module(Module.NOTES) == []


def test_parse_subview_checks_module_membership():
    assert parse_subview(Module.CRM, "crm.kpis") == "crm.kpis"
    with pytest.raises(InvalidInputError):
        parse_subview(Module.PROJECTS, "crm.kpis")
    with pytest.raises(InvalidInputError):
        parse_subview(Module.CRM, "crm.unknown")


def test_parse_scope_requires_matching_subview_key():
    assert parse_scope("subview", "crm.kpis") == PermissionScope.SUBVIEW
    with pytest.raises(InvalidInputError):
        parse_scope("subview", None)
    with pytest.raises(InvalidInputError):
        parse_scope("module", "crm.kpis")
    with pytest.raises(InvalidInputError):
        parse_scope("global", None)


def test_validate_subviews_enabled_accepts_list_or_map():
    assert validate_subviews_enabled(Module.CRM, ["crm.kpis"]) == {"crm.kpis": True}
    assert validate_subviews_enabled(Module.CRM, {"crm.kpis": False}) == {"crm.kpis": False}
    with pytest.raises(InvalidInputError):
        validate_subviews_enabled(Module.CRM, ["roadmap.gantt"])


def test_project_access_levels_are_ordered():
    assert ProjectAccessLevel.WRITE.satisfies(ProjectAccessLevel.COMMENT)
    assert ProjectAccessLevel.COMMENT.satisfies(ProjectAccessLevel.READ)
    assert not ProjectAccessLevel.READ.satisfies(ProjectAccessLevel.COMMENT)


def test_mutating_actions_require_write_level():
    assert ACTION_ACCESS_LEVEL[Action.READ] == ProjectAccessLevel.READ
    for action in (Action.CREATE, Action.UPDATE, Action.DELETE):
        assert ACTION_ACCESS_LEVEL[action] == ProjectAccessLevel.WRITE


def test_normalize_role_maps_legacy_vocabulary():
    assert normalize_role("owner") == (Role.ADMIN, True)
    assert normalize_role("collaborator") == (Role.MEMBER, False)
    assert normalize_role("client_viewer") == (Role.GUEST, False)
    assert normalize_role("guest") == (Role.GUEST, False)
    with pytest.raises(ValueError):
        normalize_role("superuser")
