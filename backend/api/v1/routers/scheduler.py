"""
Scheduler Router — trigger a multi-workspace sweep, inspect recent runs.
"""

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from api.deps import get_services
from api.state import Services
from core.errors import ValidationError
from workers.scheduler import RunMode

router = APIRouter(prefix="/api/v1/alerts/scheduler", tags=["scheduler"])


class SchedulerTriggerRequest(BaseModel):
    manual: bool = False
    workspace_id: str | None = None


@router.post("")
async def trigger_scheduler(
    body: SchedulerTriggerRequest | None = None,
    services: Services = Depends(get_services),
):
    """Run a sweep now. Per-workspace failures are reported, not raised."""
    body = body or SchedulerTriggerRequest()
    mode = RunMode.MANUAL if body.manual else RunMode.TIMED
    run = await services.scheduler.run(mode, workspace_id=body.workspace_id or None)
    return run.to_dict()


@router.get("")
async def scheduler_status(
    action: str | None = None,
    services: Services = Depends(get_services),
):
    if action != "status":
        raise ValidationError("Invalid action parameter")
    return await services.scheduler.status()
