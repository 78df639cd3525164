"""
Load a starter product catalog into an empty database.

Usage:
    python scripts/seed_catalog.py
"""
import os
import sys
from decimal import Decimal
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.kibbledrop.modules.catalog.models import Product  # noqa: E402
from scripts._db_utils import script_session  # noqa: E402

SAMPLE_PRODUCTS = [
    {
        "name": "Premium Dog Food - Chicken & Rice",
        "description": "High-quality protein with wholesome grains for adult dogs. Real chicken is the first ingredient.",
        "price": Decimal("29.99"),
        "category": "Food",
        "pet_type": "Dog",
        "image": "/premium-dog-food.jpg",
        "featured": True,
        "brand": "Royal Canin",
        "weight": "15 lbs",
        "life_stage": "Adult",
    },
    {
        "name": "Grain-Free Salmon Cat Food",
        "description": "Grain-free recipe with wild-caught salmon for cats with sensitive stomachs.",
        "price": Decimal("24.99"),
        "category": "Food",
        "pet_type": "Cat",
        "image": "/cat-food-salmon.jpg",
        "featured": True,
        "brand": "Blue Buffalo",
        "weight": "10 lbs",
        "life_stage": "Adult",
    },
    {
        "name": "Puppy Growth Formula",
        "description": "DHA-enriched nutrition for healthy brain and eye development in puppies.",
        "price": Decimal("32.99"),
        "category": "Food",
        "pet_type": "Dog",
        "image": "/puppy-food.jpg",
        "featured": False,
        "brand": "Hill's Science Diet",
        "weight": "12 lbs",
        "life_stage": "Puppy",
    },
    {
        "name": "Dental Chew Treats",
        "description": "Daily dental chews that reduce tartar build-up and freshen breath.",
        "price": Decimal("12.99"),
        "category": "Treats",
        "pet_type": "Dog",
        "image": "/dental-chews.jpg",
        "featured": False,
        "brand": "Greenies",
        "weight": "1 lb",
        "life_stage": "All",
    },
    {
        "name": "Joint Support Supplement",
        "description": "Glucosamine and chondroitin chews for senior pets with stiff joints.",
        "price": Decimal("19.99"),
        "category": "Supplements",
        "pet_type": "Dog",
        "image": "/joint-supplement.jpg",
        "featured": True,
        "brand": "Cosequin",
        "weight": "60 chews",
        "life_stage": "Senior",
    },
]


def seed_catalog(*, database_url: str | None = None) -> int:
    """Insert SAMPLE_PRODUCTS when the catalog is empty; returns the number inserted."""
    db_url = (database_url or os.environ.get("DATABASE_URL") or "sqlite:///kibbledrop.db").strip()
    with script_session(db_url) as s:
        if s.query(Product.id).first() is not None:
            print("Catalog already has products; nothing to do.")
            return 0
        s.add_all(Product(**row) for row in SAMPLE_PRODUCTS)
    print(f"Seeded {len(SAMPLE_PRODUCTS)} products.")
    return len(SAMPLE_PRODUCTS)


if __name__ == "__main__":
    seed_catalog()
