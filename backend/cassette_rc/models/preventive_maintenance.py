from __future__ import annotations
from typing import Optional, List
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import Integer, String, Text, Boolean, JSON, Date, ForeignKey, DateTime, UniqueConstraint, func
from .base import Base, status_check


class PreventiveMaintenance(Base):
    __tablename__ = 'preventive_maintenance'
    STATUS_SCHEDULED = 'SCHEDULED'
    STATUS_IN_PROGRESS = 'IN_PROGRESS'
    STATUS_COMPLETED = 'COMPLETED'
    STATUS_CANCELLED = 'CANCELLED'
    STATUS_RESCHEDULED = 'RESCHEDULED'
    ALL_STATUSES = (STATUS_SCHEDULED, STATUS_IN_PROGRESS, STATUS_COMPLETED, STATUS_CANCELLED, STATUS_RESCHEDULED)
    ACTIVE_STATUSES = (STATUS_SCHEDULED, STATUS_IN_PROGRESS, STATUS_RESCHEDULED)

    TYPE_ROUTINE = 'ROUTINE'
    TYPE_ON_DEMAND_PENGELOLA = 'ON_DEMAND_PENGELOLA'
    TYPE_ON_DEMAND_RC = 'ON_DEMAND_RC'
    TYPE_EMERGENCY = 'EMERGENCY'
    ALL_TYPES = (TYPE_ROUTINE, TYPE_ON_DEMAND_PENGELOLA, TYPE_ON_DEMAND_RC, TYPE_EMERGENCY)

    __table_args__ = (status_check(ALL_STATUSES, 'ck_preventive_maintenance_status'),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    pm_number: Mapped[str] = mapped_column(String(32), unique=True, nullable=False, index=True)
    pm_type: Mapped[str] = mapped_column(String(32), nullable=False, default=TYPE_ROUTINE)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default=STATUS_SCHEDULED, index=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    bank_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    scheduled_date = mapped_column(Date, nullable=False, index=True)
    assigned_engineer: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    requested_by: Mapped[int] = mapped_column(Integer, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    started_at = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at = mapped_column(DateTime(timezone=True), nullable=True)
    completed_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    cancelled_at = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    cancel_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    # Routine auto-scheduling
    auto_schedule: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    interval_days: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    next_pm_date = mapped_column(Date, nullable=True, index=True)
    next_pm_id: Mapped[Optional[int]] = mapped_column(ForeignKey('preventive_maintenance.id'), nullable=True)
    source_pm_id: Mapped[Optional[int]] = mapped_column(ForeignKey('preventive_maintenance.id'), nullable=True)
    deleted_at = mapped_column(DateTime(timezone=True), nullable=True)
    deleted_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    created_at: Mapped[str] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[str] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    details: Mapped[List['PMCassetteDetail']] = relationship(back_populates='pm', cascade='all, delete-orphan', order_by='PMCassetteDetail.id')


class PMCassetteDetail(Base):
    __tablename__ = 'pm_cassette_details'
    STATUS_PENDING = 'PENDING'
    STATUS_IN_PROGRESS = 'IN_PROGRESS'
    STATUS_COMPLETED = 'COMPLETED'
    ALL_STATUSES = (STATUS_PENDING, STATUS_IN_PROGRESS, STATUS_COMPLETED)

    __table_args__ = (
        UniqueConstraint('pm_id', 'cassette_id', name='uq_pm_cassette'),
        status_check(ALL_STATUSES, 'ck_pm_cassette_details_status'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    pm_id: Mapped[int] = mapped_column(ForeignKey('preventive_maintenance.id', ondelete='CASCADE'), nullable=False, index=True)
    cassette_id: Mapped[int] = mapped_column(ForeignKey('cassettes.id'), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=STATUS_PENDING)
    checklist: Mapped[dict] = mapped_column(JSON, default=dict)
    findings: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    actions_taken: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    parts_replaced: Mapped[List[str]] = mapped_column(JSON, default=list)
    found_fault: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    pm: Mapped[PreventiveMaintenance] = relationship(back_populates='details')
