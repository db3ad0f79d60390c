from __future__ import annotations
from typing import Optional, List
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import Integer, String, Text, Boolean, ForeignKey, DateTime, UniqueConstraint, func
from .base import Base, status_check


class ServiceOrder(Base):
    __tablename__ = 'service_orders'
    # Status constants
    STATUS_OPEN = 'OPEN'
    STATUS_PENDING_APPROVAL = 'PENDING_APPROVAL'
    STATUS_APPROVED_ON_SITE = 'APPROVED_ON_SITE'
    STATUS_IN_DELIVERY = 'IN_DELIVERY'
    STATUS_RECEIVED = 'RECEIVED'
    STATUS_IN_PROGRESS = 'IN_PROGRESS'
    STATUS_RESOLVED = 'RESOLVED'
    STATUS_CLOSED = 'CLOSED'
    STATUS_CANCELLED = 'CANCELLED'
    ALL_STATUSES = (
        STATUS_OPEN, STATUS_PENDING_APPROVAL, STATUS_APPROVED_ON_SITE, STATUS_IN_DELIVERY,
        STATUS_RECEIVED, STATUS_IN_PROGRESS, STATUS_RESOLVED, STATUS_CLOSED, STATUS_CANCELLED,
    )
    TERMINAL_STATUSES = (STATUS_CLOSED, STATUS_CANCELLED)

    LOCATION_RC = 'RC'
    LOCATION_ON_SITE = 'ON_SITE'
    ALL_LOCATIONS = (LOCATION_RC, LOCATION_ON_SITE)

    PRIORITIES = ('LOW', 'MEDIUM', 'HIGH', 'CRITICAL')

    __table_args__ = (status_check(ALL_STATUSES, 'ck_service_orders_status'),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    ticket_number: Mapped[str] = mapped_column(String(32), unique=True, nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default=STATUS_OPEN, index=True)
    repair_location: Mapped[str] = mapped_column(String(16), nullable=False, default=LOCATION_RC)
    priority: Mapped[str] = mapped_column(String(16), nullable=False, default='MEDIUM')
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    bank_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    reported_by: Mapped[int] = mapped_column(Integer, nullable=False)
    approved_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    approved_at = mapped_column(DateTime(timezone=True), nullable=True)
    on_site_rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    resolved_at = mapped_column(DateTime(timezone=True), nullable=True)
    closed_at = mapped_column(DateTime(timezone=True), nullable=True)
    cancel_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    deleted_at = mapped_column(DateTime(timezone=True), nullable=True)
    deleted_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    created_at: Mapped[str] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[str] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    details: Mapped[List['ServiceOrderDetail']] = relationship(back_populates='order', cascade='all, delete-orphan', order_by='ServiceOrderDetail.id')
    delivery: Mapped[Optional['Delivery']] = relationship(back_populates='order', uselist=False)
    cassette_return: Mapped[Optional['CassetteReturn']] = relationship(back_populates='order', uselist=False)


class ServiceOrderDetail(Base):
    """One cassette referenced by a service order."""
    __tablename__ = 'service_order_details'
    SETTLED_PICKED_UP = 'PICKED_UP'
    SETTLED_DISPOSED = 'DISPOSED'
    SETTLED_REPLACED = 'REPLACED'

    __table_args__ = (UniqueConstraint('order_id', 'cassette_id', name='uq_order_cassette'),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    order_id: Mapped[int] = mapped_column(ForeignKey('service_orders.id', ondelete='CASCADE'), nullable=False, index=True)
    cassette_id: Mapped[int] = mapped_column(ForeignKey('cassettes.id'), nullable=False, index=True)
    title: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    request_replacement: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    replacement_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    replacement_cassette_id: Mapped[Optional[int]] = mapped_column(ForeignKey('cassettes.id'), nullable=True)
    settlement: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)

    order: Mapped[ServiceOrder] = relationship(back_populates='details')


class Delivery(Base):
    __tablename__ = 'deliveries'
    METHOD_COURIER = 'COURIER'
    METHOD_SELF = 'SELF_DELIVERY'

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    order_id: Mapped[int] = mapped_column(ForeignKey('service_orders.id'), unique=True, nullable=False)
    cassette_id: Mapped[Optional[int]] = mapped_column(ForeignKey('cassettes.id'), nullable=True)
    method: Mapped[str] = mapped_column(String(16), nullable=False, default=METHOD_COURIER)
    courier_service: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    tracking_number: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    shipped_at = mapped_column(DateTime(timezone=True), nullable=True)
    estimated_arrival = mapped_column(DateTime(timezone=True), nullable=True)
    sent_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    received_at = mapped_column(DateTime(timezone=True), nullable=True)
    received_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    order: Mapped[ServiceOrder] = relationship(back_populates='delivery')


class CassetteReturn(Base):
    """Pickup / disposal confirmation; one combined record per order."""
    __tablename__ = 'cassette_returns'
    OUTCOME_PICKUP = 'PICKUP'
    OUTCOME_DISPOSAL = 'DISPOSAL'
    OUTCOME_MIXED = 'MIXED'

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    order_id: Mapped[int] = mapped_column(ForeignKey('service_orders.id'), unique=True, nullable=False)
    outcome: Mapped[str] = mapped_column(String(16), nullable=False)
    recipient_name: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    signature: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    picked_up_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    disposed_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    replaced_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    confirmed_by: Mapped[int] = mapped_column(Integer, nullable=False)
    confirmed_at = mapped_column(DateTime(timezone=True), nullable=False)

    order: Mapped[ServiceOrder] = relationship(back_populates='cassette_return')
