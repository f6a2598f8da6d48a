"""Business tables written by action handlers.

Only the columns the handlers touch are mapped; the CRM owns the rest.
"""
from sqlalchemy import Column, Date, DateTime, Float, Integer, String, Text, func

from automation_runner.database import Base


class Email(Base):
    __tablename__ = "emails"

    id = Column(Integer, primary_key=True)
    org_id = Column(String, nullable=False, index=True)

    to = Column(String, nullable=False)
    cc = Column(String, nullable=True)
    bcc = Column(String, nullable=True)
    subject = Column(String, nullable=True)
    body = Column(Text, nullable=True)

    deal_id = Column(String, nullable=True)
    contact_id = Column(String, nullable=True)

    direction = Column(String, nullable=False, default="outbound")
    status = Column(String, nullable=False)
    scheduled_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Deal(Base):
    __tablename__ = "deals"

    id = Column(String, primary_key=True)
    org_id = Column(String, nullable=False, index=True)
    name = Column(String, nullable=True)
    stage = Column(String, nullable=True)


class Task(Base):
    __tablename__ = "tasks"

    id = Column(Integer, primary_key=True)
    org_id = Column(String, nullable=False, index=True)

    title = Column(String, nullable=False)
    due_date = Column(Date, nullable=True)
    priority = Column(String, nullable=False, default="Medium")

    related_deal_id = Column(String, nullable=True)
    related_contact_id = Column(String, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Proforma(Base):
    __tablename__ = "proformas"

    id = Column(Integer, primary_key=True)
    org_id = Column(String, nullable=False, index=True)
    number = Column(String, nullable=False)

    sales_order_id = Column(String, nullable=True)
    currency = Column(String, nullable=False, default="EUR")
    subtotal_cents = Column(Integer, nullable=False, default=0)
    tax_rate = Column(Float, nullable=False, default=0)
    tax_cents = Column(Integer, nullable=False, default=0)
    total_cents = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class StockReservation(Base):
    __tablename__ = "so_reservations"

    id = Column(Integer, primary_key=True)
    org_id = Column(String, nullable=False, index=True)

    sales_order_id = Column(String, nullable=True)
    product_id = Column(String, nullable=False)
    qty = Column(Float, nullable=False)
    location_id = Column(String, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
