"""
Read-only views of the user, podcast and service documents that the
matching and lifecycle services consult. Owned by other parts of the
platform; this service never writes them.
"""

from enum import Enum
from typing import Any

from pydantic import Field

from app.models.domain.base import CamelModel, DocumentModel


class PayoutDetails(CamelModel):
    account_bank: str
    account_number: str
    beneficiary_name: str | None = None


class UserRecord(DocumentModel):
    email: str | None = None
    display_name: str | None = None
    role: str | None = None
    is_guest: bool = False
    is_verified_guest: bool = False
    profile_image_url: str | None = None
    guest_rate: float | None = None
    guest_topics: list[str] = Field(default_factory=list)
    previous_appearances: list[Any] = Field(default_factory=list)
    payout_details: PayoutDetails | None = None

    @property
    def label(self) -> str:
        return self.display_name or self.email or "A UvoCollab member"


class PodcastRecord(DocumentModel):
    owner_id: str
    title: str = ""
    name: str | None = None
    status: str | None = None
    category: str | None = None
    image_url: str | None = None

    @property
    def label(self) -> str:
        return self.name or self.title or "your podcast"


class ServiceOwnerType(str, Enum):
    LEGEND = "legend"
    PODCAST = "podcast"


class ServiceRecord(DocumentModel):
    owner_type: ServiceOwnerType
    owner_id: str
    title: str = ""
    type: str | None = None
    price: float = 0.0
    is_active: bool = True
