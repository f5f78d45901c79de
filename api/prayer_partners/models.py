import uuid
from sqlalchemy import Boolean, Column, DateTime, Float, Index, Integer, String, Text, UniqueConstraint, func
from .database import Base


class Member(Base):
    __tablename__ = "member"

    id = Column(String, primary_key=True)
    display_name = Column(String, nullable=False, default="")
    joined_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    is_active = Column(Boolean, nullable=False, default=True)
    current_partner_id = Column(String, nullable=True)
    paired_this_week = Column(Boolean, nullable=False, default=False)
    last_paired_with_id = Column(String, nullable=True)

    __table_args__ = (
        Index("idx_member_current_partner_id", "current_partner_id"),
        Index("idx_member_joined_at", "joined_at"),
    )


class PartnershipRecord(Base):
    __tablename__ = "partnership_record"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    member1_id = Column(String, nullable=False)
    member2_id = Column(String, nullable=False)
    week_number = Column(Integer, nullable=False)
    year = Column(Integer, nullable=False)
    pair_date = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    is_active = Column(Boolean, nullable=False, default=True)
    notes = Column(String, nullable=False, default="automatic")
    score = Column(Float, nullable=True)

    __table_args__ = (
        UniqueConstraint("member1_id", "member2_id", "week_number", "year", name="uq_partnership_pair_week"),
        Index("idx_partnership_pair_date", "pair_date"),
        Index("idx_partnership_active", "is_active"),
    )


class PairingEvent(Base):
    __tablename__ = "pairing_event"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    member_id = Column(String, nullable=False, index=True)
    week_number = Column(Integer, nullable=False)
    year = Column(Integer, nullable=False)
    event_type = Column(String, nullable=False)
    payload = Column(Text, nullable=False, default="{}")
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class PartnershipRequest(Base):
    __tablename__ = "partnership_request"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    requester_id = Column(String, nullable=False)
    recipient_id = Column(String, nullable=False)
    message = Column(Text, nullable=False, default="")
    status = Column(String, nullable=False, default="pending")
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    expires_at = Column(DateTime(timezone=True), nullable=False)
    responded_at = Column(DateTime(timezone=True), nullable=True)
    responded_by = Column(String, nullable=True)
    admin_notes = Column(String, nullable=True)

    __table_args__ = (
        Index("idx_partnership_request_requester", "requester_id", "status"),
        Index("idx_partnership_request_recipient", "recipient_id", "status"),
        Index("idx_partnership_request_expires_at", "expires_at"),
    )
