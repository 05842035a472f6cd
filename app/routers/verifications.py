"""Trainer identity verification endpoints."""
from __future__ import annotations

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from app.core.actor import Actor
from app.db import get_db
from app.models.identity_verification import IdentityVerification
from app.models.user import UserRole
from app.schemas.verification import EligibilityRead, VerificationCreate, VerificationRead
from app.security import require_actor, require_role
from app.services import settlement
from app.services.eligibility import check_publish_eligibility

router = APIRouter(prefix="/verifications", tags=["verifications"])


@router.post("", response_model=VerificationRead, status_code=status.HTTP_201_CREATED)
def submit_verification(
    payload: VerificationCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_actor),
) -> IdentityVerification:
    return settlement.submit_identity_verification(
        db,
        actor,
        document_type=payload.document_type,
        document_url=payload.document_url,
    )


@router.get("/status", response_model=EligibilityRead)
def verification_status(
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_role(UserRole.TRAINER)),
) -> EligibilityRead:
    result = check_publish_eligibility(db, actor.user_id)
    return EligibilityRead(
        allowed=result.allowed,
        status=result.status,
        reason_code=result.reason_code,
        message=result.message,
    )
