from __future__ import annotations
from typing import Optional, List
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import Integer, String, Text, JSON, ForeignKey, DateTime, func
from .base import Base, status_check

class RepairTicket(Base):
    __tablename__ = 'repair_tickets'
    # Status constants
    STATUS_RECEIVED = 'RECEIVED'
    STATUS_DIAGNOSING = 'DIAGNOSING'
    STATUS_ON_PROGRESS = 'ON_PROGRESS'
    STATUS_COMPLETED = 'COMPLETED'
    ALL_STATUSES = (STATUS_RECEIVED, STATUS_DIAGNOSING, STATUS_ON_PROGRESS, STATUS_COMPLETED)
    ACTIVE_STATUSES = (STATUS_RECEIVED, STATUS_DIAGNOSING, STATUS_ON_PROGRESS)

    QC_PENDING = 'PENDING'
    QC_PASS = 'PASS'
    QC_FAIL = 'FAIL'

    __table_args__ = (status_check(ALL_STATUSES, 'ck_repair_tickets_status'),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    order_id: Mapped[int] = mapped_column(ForeignKey('service_orders.id'), nullable=False, index=True)
    cassette_id: Mapped[int] = mapped_column(ForeignKey('cassettes.id'), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default=STATUS_RECEIVED, index=True)
    qc_result: Mapped[str] = mapped_column(String(16), nullable=False, default=QC_PENDING)
    parts_replaced: Mapped[List[str]] = mapped_column(JSON, default=list)
    findings: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    repair_action: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    assigned_user_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    created_by: Mapped[int] = mapped_column(Integer, nullable=False)
    received_at = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at = mapped_column(DateTime(timezone=True), nullable=True)
    deleted_at = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[str] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

# Status flow: RECEIVED -> DIAGNOSING -> ON_PROGRESS -> COMPLETED (linear, COMPLETED terminal).
# QC failure still completes the ticket; the cassette goes to SCRAPPED instead.
