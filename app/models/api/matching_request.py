# app/models/api/matching_request.py
from typing import Literal

from pydantic import Field

from app.models.domain.base import CamelModel


class DismissMatchRequest(CamelModel):
    match_id: str = Field(..., min_length=1)
    dismissed_by: Literal["guest", "podcast"]
