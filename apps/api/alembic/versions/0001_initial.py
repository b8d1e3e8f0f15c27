"""Initial schema - tenants, capabilities, sharing, approvals, audit

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19

Creates every table of the access engine. Audit events are protected
against UPDATE/DELETE at the database level as well as in the ORM.
"""
from typing import Sequence, Union

from alembic import op


# revision identifiers, used by Alembic.
revision: str = '0001_initial'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


MODULES = "'crm', 'projects', 'product', 'roadmap', 'tasks', 'notes', 'documents', 'profitability'"
ROLES = "'admin', 'member', 'guest'"


def upgrade() -> None:
    """Create access engine tables."""

    op.execute('CREATE EXTENSION IF NOT EXISTS pgcrypto')  # For gen_random_uuid()

    # ==========================================================================
    # Organizations & Members
    # ==========================================================================
    op.execute('''
        CREATE TABLE organizations (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            name VARCHAR(255) NOT NULL,
            slug VARCHAR(100) UNIQUE NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')

    op.execute(f'''
        CREATE TABLE members (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            organization_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
            user_id UUID NOT NULL,
            email VARCHAR(255) NOT NULL,
            display_name VARCHAR(255),
            role VARCHAR(20) NOT NULL,
            status VARCHAR(20) NOT NULL DEFAULT 'active',
            is_owner BOOLEAN NOT NULL DEFAULT false,
            permission_pack_id VARCHAR(64),
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT uq_members_org_user UNIQUE (organization_id, user_id),
            CONSTRAINT ck_members_role CHECK (role IN ({ROLES})),
            CONSTRAINT ck_members_status CHECK (status IN ('active', 'invited'))
        )
    ''')
    op.execute('CREATE INDEX idx_members_org_role ON members(organization_id, role)')

    op.execute(f'''
        CREATE TABLE invitations (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            organization_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
            email VARCHAR(255) NOT NULL,
            role VARCHAR(20) NOT NULL,
            token_hash VARCHAR(64) UNIQUE NOT NULL,
            status VARCHAR(20) NOT NULL DEFAULT 'pending',
            invited_by_member_id UUID REFERENCES members(id) ON DELETE SET NULL,
            accepted_member_id UUID REFERENCES members(id) ON DELETE SET NULL,
            expires_at TIMESTAMPTZ NOT NULL,
            accepted_at TIMESTAMPTZ,
            revoked_at TIMESTAMPTZ,
            email_bounced BOOLEAN NOT NULL DEFAULT false,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT ck_invitations_role CHECK (role IN ({ROLES})),
            CONSTRAINT ck_invitations_status CHECK (status IN ('pending', 'accepted', 'revoked'))
        )
    ''')
    op.execute('CREATE INDEX idx_invitations_org_status ON invitations(organization_id, status)')
    op.execute('CREATE INDEX idx_invitations_email ON invitations(email)')

    # ==========================================================================
    # Capabilities
    # ==========================================================================
    op.execute(f'''
        CREATE TABLE permissions (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            organization_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
            member_id UUID NOT NULL REFERENCES members(id) ON DELETE CASCADE,
            module VARCHAR(30) NOT NULL,
            action VARCHAR(20) NOT NULL,
            scope VARCHAR(20) NOT NULL DEFAULT 'module',
            subview_key VARCHAR(64),
            allowed BOOLEAN NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT ck_permissions_module CHECK (module IN ({MODULES})),
            CONSTRAINT ck_permissions_action CHECK (action IN ('read', 'create', 'update', 'delete')),
            CONSTRAINT ck_permissions_scope_subview CHECK (
                (scope = 'module' AND subview_key IS NULL)
                OR (scope = 'subview' AND subview_key IS NOT NULL)
            )
        )
    ''')
    op.execute('CREATE INDEX idx_permissions_member_module ON permissions(member_id, module, action)')
    # NULL subview keys never collide in a plain unique index; split by scope
    op.execute('''
        CREATE UNIQUE INDEX uq_permissions_module_scope
        ON permissions(member_id, module, action) WHERE subview_key IS NULL
    ''')
    op.execute('''
        CREATE UNIQUE INDEX uq_permissions_subview_scope
        ON permissions(member_id, module, action, subview_key) WHERE subview_key IS NOT NULL
    ''')

    op.execute(f'''
        CREATE TABLE module_views (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            organization_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
            member_id UUID NOT NULL REFERENCES members(id) ON DELETE CASCADE,
            module VARCHAR(30) NOT NULL,
            subviews_enabled JSONB NOT NULL DEFAULT '{{}}'::jsonb,
            layout VARCHAR(50),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT uq_module_views_member_module UNIQUE (member_id, module),
            CONSTRAINT ck_module_views_module CHECK (module IN ({MODULES}))
        )
    ''')

    op.execute(f'''
        CREATE TABLE role_view_templates (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            organization_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
            role VARCHAR(20) NOT NULL,
            module VARCHAR(30) NOT NULL,
            subviews_enabled JSONB NOT NULL DEFAULT '{{}}'::jsonb,
            layout VARCHAR(50),
            updated_by_member_id UUID REFERENCES members(id) ON DELETE SET NULL,
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT uq_role_view_templates_org_role_module UNIQUE (organization_id, role, module),
            CONSTRAINT ck_role_view_templates_role CHECK (role IN ({ROLES})),
            CONSTRAINT ck_role_view_templates_module CHECK (module IN ({MODULES}))
        )
    ''')

    op.execute('''
        CREATE TABLE project_access_grants (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            organization_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
            member_id UUID NOT NULL REFERENCES members(id) ON DELETE CASCADE,
            project_id UUID NOT NULL,
            access_level VARCHAR(20) NOT NULL,
            granted_by_member_id UUID REFERENCES members(id) ON DELETE SET NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT uq_project_access_member_project UNIQUE (member_id, project_id),
            CONSTRAINT ck_project_access_level CHECK (access_level IN ('read', 'comment', 'write'))
        )
    ''')
    op.execute(
        'CREATE INDEX idx_project_access_org_project ON project_access_grants(organization_id, project_id)'
    )

    # ==========================================================================
    # Sharing & Approvals
    # ==========================================================================
    op.execute('''
        CREATE TABLE share_links (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            organization_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
            resource_type VARCHAR(30) NOT NULL,
            resource_id UUID NOT NULL,
            token_hash VARCHAR(64) UNIQUE NOT NULL,
            permissions JSONB NOT NULL DEFAULT '{}'::jsonb,
            expires_at TIMESTAMPTZ,
            revoked_at TIMESTAMPTZ,
            revoked_by_member_id UUID REFERENCES members(id) ON DELETE SET NULL,
            access_count INTEGER NOT NULL DEFAULT 0,
            last_accessed_at TIMESTAMPTZ,
            created_by_member_id UUID REFERENCES members(id) ON DELETE SET NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT ck_share_links_resource_type CHECK (resource_type IN (
                'project', 'roadmap', 'backlog', 'note', 'document', 'profitability_project'
            ))
        )
    ''')
    op.execute(
        'CREATE INDEX idx_share_links_org_resource ON share_links(organization_id, resource_type, resource_id)'
    )

    op.execute('''
        CREATE TABLE approvals (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            organization_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
            project_id UUID,
            resource_type VARCHAR(50) NOT NULL,
            resource_id UUID NOT NULL,
            status VARCHAR(30) NOT NULL DEFAULT 'requested',
            requested_by_member_id UUID REFERENCES members(id) ON DELETE SET NULL,
            decided_by_member_id UUID REFERENCES members(id) ON DELETE SET NULL,
            comment TEXT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            decided_at TIMESTAMPTZ,
            CONSTRAINT ck_approvals_status CHECK (status IN (
                'requested', 'approved', 'rejected', 'changes_requested'
            ))
        )
    ''')
    op.execute('CREATE INDEX idx_approvals_org_created ON approvals(organization_id, created_at)')
    op.execute(
        'CREATE INDEX idx_approvals_org_resource ON approvals(organization_id, resource_type, resource_id)'
    )
    op.execute(
        'CREATE INDEX idx_approvals_org_project_status ON approvals(organization_id, project_id, status)'
    )

    # ==========================================================================
    # Audit (append-only)
    # ==========================================================================
    op.execute('''
        CREATE TABLE audit_events (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            organization_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
            actor_member_id UUID,
            action_type VARCHAR(50) NOT NULL,
            resource_type VARCHAR(50),
            resource_id UUID,
            meta JSONB,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')
    op.execute('CREATE INDEX idx_audit_events_org_created ON audit_events(organization_id, created_at)')
    op.execute(
        'CREATE INDEX idx_audit_events_org_action_created '
        'ON audit_events(organization_id, action_type, created_at)'
    )
    op.execute(
        'CREATE INDEX idx_audit_events_org_resource ON audit_events(organization_id, resource_type, resource_id)'
    )
    op.execute('''
        CREATE FUNCTION audit_events_append_only() RETURNS trigger AS $$
        BEGIN
            RAISE EXCEPTION 'audit_events is append-only';
        END;
        $$ LANGUAGE plpgsql
    ''')
    op.execute('''
        CREATE TRIGGER trg_audit_events_append_only
        BEFORE UPDATE OR DELETE ON audit_events
        FOR EACH ROW EXECUTE FUNCTION audit_events_append_only()
    ''')


def downgrade() -> None:
    """Drop access engine tables."""
    op.execute('DROP TRIGGER IF EXISTS trg_audit_events_append_only ON audit_events')
    op.execute('DROP FUNCTION IF EXISTS audit_events_append_only()')
    for table in (
        'audit_events',
        'approvals',
        'share_links',
        'project_access_grants',
        'role_view_templates',
        'module_views',
        'permissions',
        'invitations',
        'members',
        'organizations',
    ):
        op.execute(f'DROP TABLE IF EXISTS {table}')
