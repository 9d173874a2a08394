"""SQLAlchemy ORM models for checkout persistence"""

import uuid
from sqlalchemy import Column, String, Numeric, DateTime, Text, JSON, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func

Base = declarative_base()


class ClientRecord(Base):
    """Portal client, as far as checkout needs it"""

    __tablename__ = "client_record"

    id = Column(Text, primary_key=True)
    name = Column(Text, nullable=False)
    contact_email = Column(Text, nullable=True)
    growth_stage = Column(Text, nullable=True)
    stripe_customer_id = Column(Text, nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())


class CheckoutCart(Base):
    """Cart handed over by the recommendation builder, keyed by client + tier"""

    __tablename__ = "checkout_cart"
    __table_args__ = (UniqueConstraint("client_id", "tier", name="uq_checkout_cart_client_tier"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    client_id = Column(Text, nullable=False, index=True)
    tier = Column(String(32), nullable=False)
    items = Column(JSON, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Settlement(Base):
    """Audit record of a settled checkout"""

    __tablename__ = "settlement"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    client_id = Column(Text, nullable=False, index=True)
    tier = Column(String(32), nullable=False)
    final_amount = Column(Numeric(12, 2), nullable=False)
    recurring_amount = Column(Numeric(12, 2), nullable=False)
    payment_path = Column(Text, nullable=False)
    coupon_code = Column(Text, nullable=True)
    processor_reference = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
