"""Admin CLI."""

import uuid

from click.testing import CliRunner

from tenant_access.cli import cli
from tenant_access.db.models import Member, Organization


def test_list_packs():
    result = CliRunner().invoke(cli, ["list-packs"])
    assert result.exit_code == 0
    assert "client_portal" in result.output
    assert "guest" in result.output


def test_show_pack():
    result = CliRunner().invoke(cli, ["show-pack", "guest"])
    assert result.exit_code == 0
    assert result.output.splitlines()[0].startswith("module")


def test_show_unknown_pack():
    result = CliRunner().invoke(cli, ["show-pack", "nothing_here"])
    assert result.exit_code != 0


def test_create_org(db):
    user_id = uuid.uuid4()
    result = CliRunner().invoke(cli, [
        "create-org",
        "--name", "Acme Corp",
        "--slug", "acme",
        "--owner-email", "admin@acme.com",
        "--owner-user-id", str(user_id),
    ])
    assert result.exit_code == 0, result.output
    assert "Created organization: Acme Corp" in result.output

    org = db.query(Organization).filter(Organization.slug == "acme").one()
    owner = db.query(Member).filter(Member.organization_id == org.id).one()
    assert owner.is_owner is True
    assert owner.user_id == user_id

    duplicate = CliRunner().invoke(cli, [
        "create-org", "--name", "Again", "--slug", "acme", "--owner-email", "x@acme.com",
    ])
    assert duplicate.exit_code != 0


def test_show_matrix(db, owner):
    result = CliRunner().invoke(cli, [
        "show-matrix", "--org-id", str(owner.organization_id), "--member-id", str(owner.id),
    ])
    assert result.exit_code == 0
    assert "crm" in result.output
