from fastapi import APIRouter, Depends
from sqlalchemy import text

from callqc.container import Services
from callqc.core.deps import get_services

router = APIRouter(tags=["health"])


@router.get("/health")
def health():
    return {"status": "ok"}


@router.get("/ready")
def ready(services: Services = Depends(get_services)):
    with services.session_factory() as db:
        db.execute(text("SELECT 1"))
    services.queue.ping()
    return {"status": "ready"}
