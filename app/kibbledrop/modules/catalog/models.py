from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, DateTime, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.kibbledrop.models import Base
from app.kibbledrop.utils import utcnow


class Product(Base):
    __tablename__ = "products"
    __table_args__ = (
        Index("idx_products_category", "category"),
        Index("idx_products_pet_type", "pet_type"),
        Index("idx_products_featured", "featured"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    # Required
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    category: Mapped[str] = mapped_column(String(64), nullable=False)  # Food, Treats, Supplements, ...
    pet_type: Mapped[str] = mapped_column(String(64), nullable=False)  # Dog, Cat, ...
    image: Mapped[str] = mapped_column(String(512), nullable=False)
    featured: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Optional merchandising
    brand: Mapped[str | None] = mapped_column(String(128), nullable=True)
    weight: Mapped[str | None] = mapped_column(String(64), nullable=True)  # e.g. "15 lbs"
    life_stage: Mapped[str | None] = mapped_column(String(64), nullable=True)
    ingredients: Mapped[str | None] = mapped_column(Text, nullable=True)
    stock: Mapped[int | None] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
