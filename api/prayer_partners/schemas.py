from datetime import datetime
from pydantic import BaseModel, Field


class ManualPairRequest(BaseModel):
    member1_id: str = Field(min_length=1)
    member2_id: str = Field(min_length=1)


class UnpairRequest(BaseModel):
    member1_id: str = Field(min_length=1)
    member2_id: str = Field(min_length=1)


class MemberRegistered(BaseModel):
    member_id: str = Field(min_length=1)
    display_name: str = ""
    joined_at: datetime | None = None


class ReshuffleResponse(BaseModel):
    status: str
    pairs_created: int
    leftover_member_id: str | None = None
    pairs: list[dict] = Field(default_factory=list)
    run_stats: dict


class PartnershipRequestCreate(BaseModel):
    requester_id: str = Field(min_length=1)
    recipient_id: str = Field(min_length=1)
    message: str = Field(default="", max_length=500)


class PartnershipRequestResponse(BaseModel):
    member_id: str = Field(min_length=1)
