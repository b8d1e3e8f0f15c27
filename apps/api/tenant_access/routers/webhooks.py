"""Webhooks router - delivery feedback from external providers."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from tenant_access.core.deps import get_db
from tenant_access.services.webhooks.registry import get_handler

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])
logger = logging.getLogger(__name__)


@router.post("/{provider}")
async def receive_webhook(
    provider: str,
    request: Request,
    db: Session = Depends(get_db),
):
    """Dispatch to the provider's handler; each handler verifies its own signature."""
    try:
        handler = get_handler(provider)
    except KeyError:
        logger.warning("Webhook for unknown provider %s", provider)
        raise HTTPException(status_code=404, detail="Unknown webhook provider")
    return await handler.handle(request, db)
