from dataclasses import dataclass
from typing import Any, Awaitable, Callable
from uuid import UUID

from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from boxoffice.domain.states import JobType
from boxoffice.domain.models import JobPayload, PAYLOAD_MODELS
from boxoffice.domain.errors import InvalidPayloadError, UnknownJobTypeError
from boxoffice.payments.gateway import PaymentGateway
from boxoffice.settings import Settings

@dataclass
class JobContext:
    session: AsyncSession
    job_id: UUID
    attempt: int
    settings: Settings
    payments: PaymentGateway

Handler = Callable[[JobContext, Any], Awaitable[dict[str, Any]]]

def default_handlers() -> dict[JobType, Handler]:
    from boxoffice.handlers.payment_creation import handle_payment_creation
    from boxoffice.handlers.payment_webhook import handle_payment_webhook
    from boxoffice.handlers.orphaned_orders import handle_orphaned_order_cleanup
    from boxoffice.handlers.cleanup_jobs import handle_cleanup_old_jobs

    return {
        JobType.PAYMENT_CREATION: handle_payment_creation,
        JobType.PAYMENT_WEBHOOK: handle_payment_webhook,
        JobType.ORPHANED_ORDER_CLEANUP: handle_orphaned_order_cleanup,
        JobType.CLEANUP_OLD_JOBS: handle_cleanup_old_jobs,
    }

def resolve(job_type: str, payload: dict[str, Any], handlers: dict[JobType, Handler]) -> tuple[Handler, JobPayload]:
    """
    Finds the handler for ``job_type`` and validates the stored payload
    against its schema. Both failures are permanent.
    """
    try:
        key = JobType(job_type)
    except ValueError:
        raise UnknownJobTypeError(job_type)

    handler = handlers.get(key)
    if handler is None:
        raise UnknownJobTypeError(job_type)

    try:
        parsed = PAYLOAD_MODELS[key].model_validate(payload or {})
    except ValidationError as e:
        raise InvalidPayloadError(job_type, e) from e

    return handler, parsed