"""
API routes for donation charges, gateway webhooks and live notifications.
"""
import time
from typing import Any, Dict

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from fastapi.responses import PlainTextResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sse_starlette.sse import EventSourceResponse

from pix_donations.core.charges import ChargeCreationFlow
from pix_donations.core.notifications import NotificationHub
from pix_donations.errors import (
    DatabaseError,
    DonationError,
    ExternalError,
    NotFoundError,
    ValidationError,
)
from pix_donations.integrations.webhook_handler import WebhookHandler
from pix_donations.monitoring.health import HealthCheck

from .dependencies import (
    get_charge_flow,
    get_health_check,
    get_notification_hub,
    get_webhook_handler,
)
from .schemas import CreateChargeRequest, CreateChargeResponse, HealthCheckResponse

logger = structlog.get_logger(__name__)

# Create routers
donation_router = APIRouter(prefix="/donations", tags=["donations"])
webhook_router = APIRouter(prefix="/api/webhook", tags=["webhooks"])
sse_router = APIRouter(prefix="/sse", tags=["notifications"])
monitoring_router = APIRouter(tags=["monitoring"])


def _error_status(error: DonationError) -> int:
    # Unregistered donors are reported as a conflict, like malformed input.
    if isinstance(error, NotFoundError):
        return status.HTTP_409_CONFLICT
    return error.status_code


@donation_router.post(
    "/charge",
    response_model=CreateChargeResponse,
    response_model_by_alias=True,
    status_code=status.HTTP_201_CREATED,
    summary="Create a donation charge",
    description="Create an immediate Pix charge for a registered donor",
)
async def create_charge(
    request: CreateChargeRequest,
    flow: ChargeCreationFlow = Depends(get_charge_flow),
) -> Dict[str, Any]:
    """
    Create a Pix charge.

    Nothing is stored until the gateway confirms payment.
    """
    start_time = time.time()

    try:
        logger.info("api_create_charge_request", amount=request.amount)

        charge = await flow.create_charge(request.donor_tax_id, request.amount)

        logger.info(
            "api_create_charge_success",
            tx_id=charge.tx_id,
            duration_seconds=time.time() - start_time,
        )

        return {
            "donor_name": charge.donor_name,
            "donor_registry_ref": charge.donor_registry_ref,
            "amount": charge.amount,
            "tx_id": charge.tx_id,
            "qr_code": charge.qr_code,
            "copy_paste": charge.copy_paste,
        }

    except (ValidationError, NotFoundError) as e:
        logger.warning("api_create_charge_rejected", error=str(e), code=e.code)
        raise HTTPException(status_code=_error_status(e), detail=e.to_dict())

    except (ExternalError, DatabaseError) as e:
        logger.error("api_create_charge_error", error=str(e), code=e.code, tx_id=e.tx_id)
        raise HTTPException(status_code=_error_status(e), detail=e.to_dict())

    except Exception as e:
        logger.error("api_create_charge_unexpected_error", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="An unexpected error occurred",
        )


@webhook_router.post(
    "",
    response_class=PlainTextResponse,
    summary="Webhook base endpoint",
    description="Answers the gateway's validation request when the webhook is registered",
)
async def webhook_base() -> PlainTextResponse:
    """Acknowledge the gateway's registration probe."""
    logger.info("api_webhook_probe_received")
    return PlainTextResponse("Webhook endpoint available.", status_code=status.HTTP_200_OK)


@webhook_router.post(
    "/pix",
    response_class=PlainTextResponse,
    summary="Pix notifications",
    description="Reconcile Pix payment notifications sent by the gateway",
)
async def pix_webhook(
    request: Request,
    handler: WebhookHandler = Depends(get_webhook_handler),
) -> PlainTextResponse:
    """
    Handle Pix payment notifications.

    Per-item failures are reported in the body; only a top-level failure
    returns 500, which makes the gateway redeliver.
    """
    start_time = time.time()

    try:
        try:
            payload = await request.json()
        except ValueError:
            logger.warning("api_webhook_invalid_json")
            payload = None

        summary = await handler.handle(payload)

        logger.info(
            "api_webhook_completed",
            processed=summary.processed,
            failed=len(summary.failed_tx_ids),
            duration_seconds=time.time() - start_time,
        )

        return PlainTextResponse(summary.message, status_code=status.HTTP_200_OK)

    except Exception as e:
        logger.error("api_webhook_unexpected_error", error=str(e))
        return PlainTextResponse(
            f"Internal error while processing the webhook: {e}",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )


@sse_router.get(
    "/{tx_id}",
    summary="Live payment notifications",
    description="Server-Sent Events stream emitting donationPaid for one transaction",
)
async def donation_events(
    tx_id: str,
    request: Request,
    hub: NotificationHub = Depends(get_notification_hub),
) -> EventSourceResponse:
    """Stream payment confirmation for ``tx_id`` until the client disconnects."""
    logger.info("api_sse_connection_opened", tx_id=tx_id)
    return EventSourceResponse(
        hub.stream(tx_id),
        ping=request.app.state.settings.sse_keepalive_seconds,
    )


@monitoring_router.get("/health", response_model=HealthCheckResponse, summary="Dependency health")
async def health(health_check: HealthCheck = Depends(get_health_check)) -> Dict[str, Any]:
    return await health_check.check_all()


@monitoring_router.get("/health/live", response_model=HealthCheckResponse, summary="Liveness probe")
async def liveness(health_check: HealthCheck = Depends(get_health_check)) -> Dict[str, Any]:
    return await health_check.liveness()


@monitoring_router.get(
    "/health/ready",
    response_model=HealthCheckResponse,
    summary="Readiness probe",
    responses={503: {"description": "A dependency is unavailable"}},
)
async def readiness(
    response: Response, health_check: HealthCheck = Depends(get_health_check)
) -> Dict[str, Any]:
    """Answer 503 until the database and the gateway are both reachable."""
    result = await health_check.readiness()
    if result["status"] != "healthy":
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    return result


@monitoring_router.get("/metrics", include_in_schema=False)
async def prometheus_metrics() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
