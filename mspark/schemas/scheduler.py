from uuid import UUID
from typing import Optional
from datetime import datetime
from pydantic import BaseModel, ConfigDict


class ScheduledJobResponse(BaseModel):
    auction_id: UUID
    fire_at: datetime
    attempts: int
    in_flight: bool
    deferred_fire_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class CompletionFailureResponse(BaseModel):
    auction_id: UUID
    attempts: int
    error: str
    failed_at: datetime

    model_config = ConfigDict(from_attributes=True)


class SchedulerStateResponse(BaseModel):
    jobs: list[ScheduledJobResponse]
    failures: list[CompletionFailureResponse]
