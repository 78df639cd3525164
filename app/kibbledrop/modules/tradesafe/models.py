from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, ForeignKey, Integer, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.kibbledrop.models import Base
from app.kibbledrop.utils import utcnow


class Trade(Base):
    """Local record of a TradeSafe escrow transaction."""

    __tablename__ = "trades"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    trade_id: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)  # TradeSafe transaction id
    status: Mapped[str] = mapped_column(String(64), nullable=False, default="CREATED")  # provider state
    reference: Mapped[str | None] = mapped_column(String(128), nullable=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(8), nullable=False, default="ZAR")
    buyer_email: Mapped[str] = mapped_column(String(320), nullable=False)
    seller_token: Mapped[str | None] = mapped_column(String(128), nullable=True)
    payment_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)

    order_id: Mapped[int | None] = mapped_column(ForeignKey("orders.id", ondelete="SET NULL"), nullable=True, index=True)
    subscription_id: Mapped[int | None] = mapped_column(ForeignKey("subscriptions.id", ondelete="SET NULL"), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)


class WebhookDelivery(Base):
    """
    One row per (transaction, event) the provider has notified us about.
    The unique constraint is what makes webhook processing idempotent.
    """

    __tablename__ = "tradesafe_webhook_deliveries"
    __table_args__ = (UniqueConstraint("transaction_id", "event", name="uq_tradesafe_webhook_tx_event"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    transaction_id: Mapped[str] = mapped_column(String(128), nullable=False)
    event: Mapped[str] = mapped_column(String(64), nullable=False)
    signature: Mapped[str | None] = mapped_column(String(128), nullable=True)
    outcome: Mapped[str] = mapped_column(String(32), nullable=False, default="received")  # applied, ignored, unmatched
    processed_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
