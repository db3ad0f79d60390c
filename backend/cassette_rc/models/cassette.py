from __future__ import annotations
from typing import Optional
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import Integer, String, Text, ForeignKey, DateTime, func
from .base import Base, status_check


class Cassette(Base):
    __tablename__ = 'cassettes'
    # Status constants; each one implies a single physical/process location
    STATUS_OK = 'OK'                              # in service at the pengelola site
    STATUS_BAD = 'BAD'                            # faulty, still at the site
    STATUS_IN_TRANSIT = 'IN_TRANSIT'              # with the courier
    STATUS_IN_REPAIR = 'IN_REPAIR'                # at the RC (or opened up on site)
    STATUS_READY_FOR_PICKUP = 'READY_FOR_PICKUP'  # repaired, waiting at the RC
    STATUS_SCRAPPED = 'SCRAPPED'
    ALL_STATUSES = (STATUS_OK, STATUS_BAD, STATUS_IN_TRANSIT, STATUS_IN_REPAIR, STATUS_READY_FOR_PICKUP, STATUS_SCRAPPED)

    __table_args__ = (status_check(ALL_STATUSES, 'ck_cassettes_status'),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    serial_number: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    type_code: Mapped[str] = mapped_column(String(32), nullable=False)
    # Written only through cassette_rc.services.cassette_tracker
    status: Mapped[str] = mapped_column(String(32), nullable=False, default=STATUS_OK, index=True)
    machine_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    bank_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    replaced_cassette_id: Mapped[Optional[int]] = mapped_column(ForeignKey('cassettes.id'), nullable=True)
    replacement_order_id: Mapped[Optional[int]] = mapped_column(ForeignKey('service_orders.id'), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[str] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[str] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
