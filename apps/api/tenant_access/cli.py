"""CLI tools for tenant access administration."""

import uuid

import click

from tenant_access.core.exceptions import AccessError
from tenant_access.core.permission_packs import get_all_packs, get_pack
from tenant_access.core.security import create_session_token
from tenant_access.db.enums import Action, Module
from tenant_access.db.session import SessionLocal
from tenant_access.services import organization_service, permission_service


@click.group()
def cli():
    """Tenant access CLI tools."""
    pass


@cli.command()
@click.option("--name", required=True, help="Organization name")
@click.option("--slug", required=True, help="URL-friendly slug (lowercase, hyphens)")
@click.option("--owner-email", required=True, help="Owner email address")
@click.option("--owner-user-id", default=None, help="Identity provider user id (random if omitted)")
@click.option("--owner-name", default=None, help="Owner display name")
def create_org(name: str, slug: str, owner_email: str, owner_user_id: str | None, owner_name: str | None):
    """
    Create an organization and its owner.

    This is the bootstrap command for setting up a new tenant.

    Example:
        tenant-access create-org --name "Acme Corp" --slug acme --owner-email admin@acme.com
    """
    try:
        user_id = uuid.UUID(owner_user_id) if owner_user_id else uuid.uuid4()
    except ValueError:
        raise click.BadParameter("must be a UUID", param_hint="--owner-user-id")

    db = SessionLocal()
    try:
        org, owner = organization_service.bootstrap_organization(
            db, name, slug, user_id, owner_email, owner_name
        )
        click.echo(f"✓ Created organization: {org.name}")
        click.echo(f"  ID: {org.id}")
        click.echo(f"  Slug: {org.slug}")
        click.echo(f"✓ Owner member {owner.id} (user {owner.user_id})")
    except AccessError as e:
        raise click.ClickException(e.message)
    finally:
        db.close()


@cli.command()
def list_packs():
    """List the permission pack catalog."""
    for pack in get_all_packs():
        click.echo(f"{pack.id} (v{pack.version}) - {pack.name}: {pack.description}")


@cli.command()
@click.argument("pack_id")
def show_pack(pack_id: str):
    """Print a pack's Module x Action matrix."""
    try:
        pack = get_pack(pack_id)
    except AccessError as e:
        raise click.ClickException(e.message)
    _echo_matrix(pack.matrix())


@cli.command()
@click.option("--org-id", required=True, type=click.UUID)
@click.option("--member-id", required=True, type=click.UUID)
def show_matrix(org_id: uuid.UUID, member_id: uuid.UUID):
    """Print a member's effective Module x Action matrix."""
    db = SessionLocal()
    try:
        matrix = permission_service.get_effective_matrix(db, org_id, member_id)
    except AccessError as e:
        raise click.ClickException(e.message)
    finally:
        db.close()
    _echo_matrix(matrix)


@cli.command()
@click.option("--org-id", required=True, type=click.UUID)
@click.option("--user-id", required=True, type=click.UUID)
@click.option("--hours", default=None, type=int, help="Lifetime (default: JWT_EXPIRES_HOURS)")
def issue_token(org_id: uuid.UUID, user_id: uuid.UUID, hours: int | None):
    """Issue a session token for local testing."""
    click.echo(create_session_token(user_id, org_id, expires_hours=hours))


def _echo_matrix(matrix: dict[Module, dict[Action, bool]]) -> None:
    actions = list(Action)
    click.echo("module".ljust(14) + " ".join(a.value.ljust(8) for a in actions))
    for module, verdicts in matrix.items():
        cells = [("✓" if verdicts.get(a) else "·").ljust(8) for a in actions]
        click.echo(module.value.ljust(14) + " ".join(cells))


if __name__ == "__main__":
    cli()
