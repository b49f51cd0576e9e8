"""
Inbound webhook from the Android Management API.

The signature is checked against the raw body before anything is parsed,
so a rejected request never reaches the reconciler.
"""
import json

from fastapi import APIRouter, Depends, Request
from pydantic import ValidationError as PydanticValidationError
import structlog

from compliance_orchestrator.core.dependencies import OrchestratorContainer, get_container
from compliance_orchestrator.core.exceptions import MalformedPayloadError, UnauthorizedError
from compliance_orchestrator.models.events import parse_event
from compliance_orchestrator.schemas.common import ApiResponse
from compliance_orchestrator.utils.webhook_signature import SIGNATURE_HEADER, verify_signature

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/amapi", response_model=ApiResponse[dict])
async def amapi_webhook(
    request: Request,
    container: OrchestratorContainer = Depends(get_container),
):
    body = await request.body()
    signature = request.headers.get(SIGNATURE_HEADER)

    if not verify_signature(container.settings.amapi_webhook_secret, body, signature):
        logger.warning(
            "Webhook signature verification failed",
            signature_present=bool(signature),
            secret_configured=bool(container.settings.amapi_webhook_secret),
        )
        raise UnauthorizedError("Invalid webhook signature")

    try:
        payload = json.loads(body)
    except ValueError:
        raise MalformedPayloadError()
    if not isinstance(payload, dict):
        raise MalformedPayloadError("Webhook body must be a JSON object")

    try:
        event = parse_event(payload)
    except PydanticValidationError as e:
        raise MalformedPayloadError(
            "Webhook event is malformed",
            notification_type=payload.get("notificationType"),
            error_count=e.error_count(),
        )

    outcome = await container.reconciler.reconcile(event)

    logger.info(
        "Webhook processed",
        event_type=outcome.event_type,
        applied=outcome.applied,
        detail=outcome.detail,
        case_id=outcome.case_id,
    )
    return ApiResponse(data=outcome.to_dict(), message="Webhook processed")
