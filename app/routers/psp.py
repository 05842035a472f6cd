"""Routes for PSP webhook handling."""
from __future__ import annotations

import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from app.config import get_settings
from app.db import get_db
from app.services import psp_webhooks
from app.utils.errors import error_response

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/psp", tags=["psp"])


@router.post("/webhook", status_code=status.HTTP_200_OK)
async def psp_webhook(
    request: Request,
    db: Session = Depends(get_db),
) -> dict[str, object]:
    settings = get_settings()
    if not (settings.psp_webhook_secret or settings.psp_webhook_secret_next):
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=error_response("WEBHOOK_SECRET_NOT_CONFIGURED", "PSP webhook secret not configured"),
        )

    raw_body = await request.body()
    headers = {k: v for k, v in request.headers.items()}
    psp_webhooks.verify_psp_webhook_signature(raw_body, headers)

    try:
        payload = json.loads(raw_body)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=error_response("WEBHOOK_BODY_INVALID", "Webhook body must be JSON."),
        ) from exc
    if not isinstance(payload, dict):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=error_response("WEBHOOK_BODY_INVALID", "Webhook body must be a JSON object."),
        )

    provider = payload.get("provider") or psp_webhooks.DEFAULT_PROVIDER
    result = psp_webhooks.handle_event(db, payload, provider=provider)
    return {
        "ok": True,
        "duplicate": result.duplicate,
        "event_id": result.event.event_id,
    }


__all__ = ["router"]
