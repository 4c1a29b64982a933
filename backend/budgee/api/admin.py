"""
Administrative operations: full reclassification, cache clearing and an
on-demand run of the daily sync.
"""
from fastapi import APIRouter, Depends, HTTPException, status
import logging

from budgee.api.deps import get_gateway, require_super_admin
from budgee.database.gateway import StorageGateway
from budgee.database.models import User
from budgee.models.schemas import CacheClearResponse, DailySyncResponse, RecategorizeResponse
from budgee.services.job_queue import enqueue_daily_sync_job

router = APIRouter(prefix="/admin", tags=["admin"])
logger = logging.getLogger(__name__)


@router.post("/recategorize", response_model=RecategorizeResponse)
async def recategorize_all(
    admin: User = Depends(require_super_admin),
    gateway: StorageGateway = Depends(get_gateway),
):
    """
    Re-derive expense/income for every stored transaction
    """
    changed = gateway.recategorize_transactions()
    gateway.commit()
    logger.info(f"Admin {admin.id} recategorized transactions: {changed} changed")
    return RecategorizeResponse(changed=changed)


@router.post("/cache/{name}/clear", response_model=CacheClearResponse)
async def clear_cache(
    name: str,
    admin: User = Depends(require_super_admin),
    gateway: StorageGateway = Depends(get_gateway),
):
    try:
        domain = gateway.clear_cache(name)
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e)
        )
    return CacheClearResponse(cleared=domain.value)


@router.post("/daily-sync", response_model=DailySyncResponse, status_code=status.HTTP_202_ACCEPTED)
async def trigger_daily_sync(admin: User = Depends(require_super_admin)):
    """
    Queue a sync of every linked item now
    """
    job = enqueue_daily_sync_job(reschedule=False)
    return DailySyncResponse(job_id=job.id, status="queued")
