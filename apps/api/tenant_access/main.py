"""FastAPI application entry point."""
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from tenant_access.core.config import settings
from tenant_access.core.exceptions import AccessError
from tenant_access.core.structured_logging import build_log_context
from tenant_access.core.telemetry import configure_telemetry
from tenant_access.db.session import engine

logger = logging.getLogger(__name__)

# ============================================================================
# Sentry Integration (optional, for production error tracking)
# ============================================================================

if settings.SENTRY_DSN and settings.ENV != "dev":
    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.ENV,
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            SqlalchemyIntegration(),
        ],
        traces_sample_rate=0.1,
        send_default_pii=False,
    )
    logging.info("Sentry initialized for error tracking")

# ============================================================================
# Rate Limiting
# ============================================================================

from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from tenant_access.core.rate_limit import limiter


# ============================================================================
# FastAPI App
# ============================================================================

app = FastAPI(
    title="Tenant Access API",
    description="Multi-tenant permissions, project scoping, share links and approvals",
    version=settings.VERSION,
    docs_url="/docs" if settings.ENV == "dev" else None,
    redoc_url="/redoc" if settings.ENV == "dev" else None,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(AccessError)
async def access_error_handler(request: Request, exc: AccessError):
    """Map service errors to HTTP. Denials never include resource details."""
    if exc.status_code >= 403:
        logger.info(
            "Request rejected: %s",
            exc.kind,
            extra=build_log_context(route=request.url.path, method=request.method),
        )
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.kind},
    )


# CORS middleware - must be added before routers
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,  # Required for cookies
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Requested-With"],
)

configure_telemetry(app, engine)

# ============================================================================
# Routers
# ============================================================================

from tenant_access.routers import (
    approvals,
    audit,
    invitations,
    members,
    module_views,
    permissions,
    project_access,
    share_links,
    webhooks,
)

# Capability matrix, overrides, packs, gateway authorize
app.include_router(permissions.router)

# Membership lifecycle
app.include_router(members.router)
app.include_router(invitations.router)

# Per-member subview layout
app.include_router(module_views.router)

# Guest project scoping
app.include_router(project_access.router)

# Share links (managed + public lookup)
app.include_router(share_links.router)
app.include_router(share_links.public_router)

# Approvals
app.include_router(approvals.router)
app.include_router(approvals.project_router)

# Audit Trail (owner/admin)
app.include_router(audit.router)

# Email delivery feedback
app.include_router(webhooks.router)


# ============================================================================
# Health Check
# ============================================================================

@app.get("/health")
def health():
    """
    Health check endpoint.

    Verifies database connectivity and returns environment info.
    """
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))
    return {"status": "ok", "env": settings.ENV, "version": settings.VERSION}
