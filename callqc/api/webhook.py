import logging
from typing import Any, Dict

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from fastapi.responses import JSONResponse

from callqc.container import Services
from callqc.core.deps import get_services
from callqc.schemas import QueueStats, WebhookAck
from callqc.services.errors import WebhookValidationError
from callqc.services.gateway import ACK_MESSAGE

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhook", tags=["webhook"])


async def read_payload(request: Request) -> Dict[str, Any]:
    content_type = request.headers.get("content-type", "")
    payload: Dict[str, Any] = {}
    if "application/json" in content_type:
        try:
            body = await request.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            payload = body
    elif "form" in content_type:
        form = await request.form()
        payload = dict(form)
    if not payload:
        payload = dict(request.query_params)
    return payload


@router.post("/ringba", response_model=WebhookAck)
async def receive_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    services: Services = Depends(get_services),
):
    raw = await read_payload(request)
    try:
        payload = services.gateway.accept(raw)
    except WebhookValidationError as exc:
        logger.warning("Rejected webhook: %s", exc)
        return JSONResponse(status_code=400, content=WebhookAck(success=False, message=str(exc)).model_dump())
    logger.info("Webhook received for call %s", payload["system_call_id"])
    background_tasks.add_task(services.gateway.hand_off, payload)
    return WebhookAck(success=True, message=ACK_MESSAGE)


@router.get("/queue/stats", response_model=QueueStats)
def queue_stats(services: Services = Depends(get_services)):
    return services.queue.stats()
