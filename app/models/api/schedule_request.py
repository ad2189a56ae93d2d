# app/models/api/schedule_request.py
from typing import Literal

from pydantic import Field

from app.models.domain.base import CamelModel


class SlotInput(CamelModel):
    """A candidate recording time; validated by the scheduling service."""

    date: str
    time: str
    timezone: str
    duration: str | None = None


class ProposeScheduleRequest(CamelModel):
    collaboration_id: str = Field(..., min_length=1)
    proposed_by: str | None = None
    proposed_by_role: str
    slots: list[SlotInput]
    message: str | None = None


class ScheduleResponseRequest(CamelModel):
    collaboration_id: str = Field(..., min_length=1)
    proposal_id: str = Field(..., min_length=1)
    action: Literal["accept", "decline"]
    accepted_slot_index: int | None = None
    decline_reason: str | None = None
    user_id: str | None = None


class RescheduleCreateRequest(CamelModel):
    """Request body for POST /schedule/reschedule."""

    collaboration_id: str = Field(..., min_length=1)
    requested_by: str | None = None
    requested_by_role: str
    proposed_slots: list[SlotInput]
    reason: str
    message: str | None = None


class RescheduleResponseRequest(CamelModel):
    collaboration_id: str = Field(..., min_length=1)
    reschedule_id: str = Field(..., min_length=1)
    action: Literal["accept", "decline"]
    accepted_slot_index: int | None = None
    decline_reason: str | None = None
    user_id: str | None = None
