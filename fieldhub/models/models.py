from datetime import date, datetime, timezone
from typing import Optional

from sqlalchemy import (
    String,
    DateTime,
    Date,
    Boolean,
    ForeignKey,
    Integer,
    Float,
    JSON,
    Text,
    Index,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship, Mapped, mapped_column

from ..db import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def int_pk() -> Mapped[int]:
    return mapped_column(Integer, primary_key=True, autoincrement=True)


class Subcontractor(Base):
    """Independent crew that claims time slots"""
    __tablename__ = "subcontractors"

    id: Mapped[int] = int_pk()
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False)  # stored lower-cased
    phone: Mapped[str] = mapped_column(String(100), nullable=False)
    service_areas: Mapped[list] = mapped_column(JSON, nullable=False)
    max_daily_jobs: Mapped[int] = mapped_column(Integer, nullable=False)
    rating: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    time_slots = relationship("TimeSlot", back_populates="subcontractor")

    __table_args__ = (
        UniqueConstraint("email", name="uq_subcontractors_email"),
    )


class Order(Base):
    """A job created by HQ dispatch"""
    __tablename__ = "orders"

    id: Mapped[int] = int_pk()
    customer_name: Mapped[str] = mapped_column(String(255), nullable=False)
    customer_email: Mapped[str] = mapped_column(String(255), nullable=False)
    customer_phone: Mapped[str] = mapped_column(String(100), nullable=False)
    address: Mapped[str] = mapped_column(String(500), nullable=False)
    city: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    location_lat: Mapped[float] = mapped_column(Float, nullable=False)
    location_lng: Mapped[float] = mapped_column(Float, nullable=False)
    service_type: Mapped[str] = mapped_column(String(50), nullable=False)  # Installation|Delivery|Repair
    inventory_items: Mapped[list] = mapped_column(JSON, nullable=False)  # [{name, quantity, in_stock}]
    inventory_status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    priority: Mapped[str] = mapped_column(String(20), nullable=False, default="medium")
    estimated_duration: Mapped[int] = mapped_column(Integer, nullable=False)  # minutes
    special_instructions: Mapped[Optional[str]] = mapped_column(Text)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="unassigned", index=True)
    due_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    time_slots = relationship("TimeSlot", back_populates="order", passive_deletes=True)

    __table_args__ = (
        Index("idx_orders_status_priority", "status", "priority"),
    )


class TimeSlot(Base):
    """Schedulable unit of capacity, always tied to one order"""
    __tablename__ = "time_slots"

    id: Mapped[int] = int_pk()
    order_id: Mapped[int] = mapped_column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    subcontractor_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("subcontractors.id"), index=True)
    slot_date: Mapped[date] = mapped_column(Date, nullable=False)
    slot_start_time: Mapped[str] = mapped_column(String(5), nullable=False)  # HH:MM
    slot_end_time: Mapped[str] = mapped_column(String(5), nullable=False)  # HH:MM
    is_available: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    claimed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="available")  # available|claimed|completed|cancelled
    version_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    order = relationship("Order", back_populates="time_slots")
    subcontractor = relationship("Subcontractor", back_populates="time_slots")

    # UPDATE ... WHERE version_id = :seen; a concurrent writer makes the flush fail
    __mapper_args__ = {"version_id_col": version_id}

    # Capacity counting
    __table_args__ = (
        Index("idx_time_slots_sub_date_status", "subcontractor_id", "slot_date", "status"),
        Index("idx_time_slots_date_start", "slot_date", "slot_start_time"),
    )


class JobCompletion(Base):
    """Write-once evidence that a claimed slot was worked"""
    __tablename__ = "job_completions"

    id: Mapped[int] = int_pk()
    order_id: Mapped[int] = mapped_column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    subcontractor_id: Mapped[int] = mapped_column(Integer, ForeignKey("subcontractors.id"), nullable=False, index=True)
    time_slot_id: Mapped[int] = mapped_column(Integer, ForeignKey("time_slots.id"), nullable=False)
    completion_photos: Mapped[list] = mapped_column(JSON, nullable=False)
    signature_data: Mapped[str] = mapped_column(Text, nullable=False)
    gps_lat: Mapped[float] = mapped_column(Float, nullable=False)
    gps_lng: Mapped[float] = mapped_column(Float, nullable=False)
    gps_timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    completion_notes: Mapped[Optional[str]] = mapped_column(Text)
    completed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    customer_satisfaction: Mapped[Optional[int]] = mapped_column(Integer)  # 1-5

    __table_args__ = (
        UniqueConstraint("time_slot_id", name="uq_job_completions_time_slot"),
    )


class AnalyticsEvent(Base):
    """Observational record: ghost_job|double_book|cancellation|completion"""
    __tablename__ = "analytics_events"

    id: Mapped[int] = int_pk()
    event_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    order_id: Mapped[Optional[int]] = mapped_column(Integer)
    subcontractor_id: Mapped[Optional[int]] = mapped_column(Integer)
    # "metadata" is reserved on declarative classes
    event_metadata: Mapped[dict] = mapped_column("metadata", JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)


class AuditLog(Base):
    """Append-only audit log for dispatch actions"""
    __tablename__ = "audit_logs"

    id: Mapped[int] = int_pk()
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)  # order|time_slot|job_completion|subcontractor
    entity_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    action: Mapped[str] = mapped_column(String(50), nullable=False)  # CREATE|CLAIM|CANCEL|COMPLETE|TRANSITION|STATUS_OVERRIDE|DELETE
    actor_id: Mapped[Optional[str]] = mapped_column(String(100))
    actor_role: Mapped[Optional[str]] = mapped_column(String(50))  # dispatcher|subcontractor|system
    source: Mapped[Optional[str]] = mapped_column(String(50))  # api|system|script
    changes_json: Mapped[Optional[dict]] = mapped_column(JSON)  # Before/after diff
    timestamp_utc: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
    context: Mapped[Optional[dict]] = mapped_column(JSON)
    integrity_hash: Mapped[Optional[str]] = mapped_column(String(64))  # SHA256 hash for integrity verification

    __table_args__ = (
        Index("idx_audit_entity", "entity_type", "entity_id"),
    )
