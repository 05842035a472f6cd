"""Identity verification schemas."""
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from app.models.identity_verification import VerificationStatus
from app.services.eligibility import EligibilityReason


class VerificationCreate(BaseModel):
    document_type: str = Field(..., min_length=1, max_length=50)
    document_url: str = Field(..., min_length=1, max_length=1024)


class VerificationRead(BaseModel):
    id: int
    trainer_id: int
    status: VerificationStatus
    document_type: str
    decided_at: datetime | None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class EligibilityRead(BaseModel):
    allowed: bool
    status: VerificationStatus
    reason_code: EligibilityReason
    message: str
