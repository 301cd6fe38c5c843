from fastapi import APIRouter, Depends
from uuid import UUID

from mspark.models.user import User
from mspark.api.dependencies import admin_required, get_services
from mspark.schemas.scheduler import CompletionFailureResponse, ScheduledJobResponse, SchedulerStateResponse
from mspark.services.container import Services

router = APIRouter()


@router.get("/jobs", response_model=SchedulerStateResponse)
async def list_jobs(
    current_user: User = Depends(admin_required),
    services: Services = Depends(get_services),
):
    scheduler = services.scheduler
    return SchedulerStateResponse(
        jobs=[ScheduledJobResponse.model_validate(job) for job in scheduler.jobs()],
        failures=[CompletionFailureResponse.model_validate(f) for f in scheduler.failures.values()],
    )


@router.post("/{auction_id}/reschedule")
async def reschedule(
    auction_id: UUID,
    current_user: User = Depends(admin_required),
    services: Services = Depends(get_services),
):
    job = await services.scheduler.reschedule_by_id(auction_id)
    return {
        "success": True,
        "scheduled": job is not None,
        "job": ScheduledJobResponse.model_validate(job) if job else None,
    }


@router.delete("/{auction_id}")
async def cancel(
    auction_id: UUID,
    current_user: User = Depends(admin_required),
    services: Services = Depends(get_services),
):
    cancelled = await services.scheduler.cancel_by_id(auction_id)
    return {"success": True, "cancelled": cancelled}
