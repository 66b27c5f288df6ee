from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from boxoffice.domain.states import JobType

class JobPayload(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

class PaymentCreationPayload(JobPayload):
    order_id: UUID
    amount: Decimal = Field(gt=0)
    currency: str = Field(default="EUR", min_length=3, max_length=3)
    customer_email: EmailStr
    customer_name: str
    description: Optional[str] = None
    redirect_url: str
    webhook_url: str

class PaymentWebhookPayload(JobPayload):
    # Provider transaction id (Mollie tr_xxx or mock_xxx)
    payment_id: str = Field(min_length=1)

class OrphanedOrderCleanupPayload(JobPayload):
    older_than_hours: int = Field(default=24, gt=0)

class CleanupOldJobsPayload(JobPayload):
    older_than_days: int = Field(default=14, gt=0)

PAYLOAD_MODELS: dict[JobType, type[JobPayload]] = {
    JobType.PAYMENT_CREATION: PaymentCreationPayload,
    JobType.PAYMENT_WEBHOOK: PaymentWebhookPayload,
    JobType.ORPHANED_ORDER_CLEANUP: OrphanedOrderCleanupPayload,
    JobType.CLEANUP_OLD_JOBS: CleanupOldJobsPayload,
}
