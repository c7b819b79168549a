import logging
import uuid

from sqlalchemy.orm import Session
from sqlalchemy import text
from sqlalchemy.exc import OperationalError, ProgrammingError

from app.db.session import SessionLocal
from app.core.security import hash_password
from app.models.catalog_item import CatalogItem
from app.models.user import User

logger = logging.getLogger(__name__)

# (slug, item_type, product_type, name, price label as published); all prices in euros
CATALOG = [
    ("jerusalem-old-city", "day-tour", "day-tour", "Jerusalem Old City Walking Tour", "€99"),
    ("dead-sea-masada", "day-tour", "day-tour", "Masada & Dead Sea Sunrise", "€149"),
    ("galilee-nazareth", "day-tour", "day-tour", "Nazareth & Sea of Galilee", "€129"),
    ("petra-day-trip", "day-tour", "day-tour", "Petra Day Trip from Eilat", "€289"),
    ("holy-land-7-days", "vacation-package", "vacation-package", "Holy Land Highlights - 7 Days", "€1,490"),
    ("negev-desert-retreat", "vacation-package", "vacation-package", "Negev Desert Retreat - 4 Days", "€890"),
    ("tel-aviv-city-break", "vacation-package", "vacation-package", "Tel Aviv City Break - 3 Nights", "€640"),
    ("eilat", "destination", "car-rental", "Eilat Car Rental (per day)", "€55"),
    ("haifa", "destination", "hotel", "Haifa Boutique Hotel (per night)", "€180"),
]


def ensure_user(db: Session, email: str, password: str, role: str, name: str):
    u = db.query(User).filter(User.email == email).first()
    if u:
        return
    db.add(
        User(
            id=str(uuid.uuid4()),
            email=email,
            full_name=name,
            role=role,
            password_hash=hash_password(password),
            is_active=True,
        )
    )
    db.commit()


def ensure_catalog(db: Session) -> int:
    created = 0
    for slug, item_type, product_type, name, label in CATALOG:
        if db.get(CatalogItem, (slug, item_type)):
            continue
        db.add(CatalogItem(id=slug, item_type=item_type, product_type=product_type, name=name, price_label=label,
                           currency="eur", active=True))
        created += 1
    db.commit()
    return created


def run(db=None):
    if db is None:
        db = SessionLocal()
    try:
        # If migrations haven't been applied yet, seeding must not crash the API.
        try:
            db.execute(text("SELECT 1 FROM users LIMIT 1"))
        except (ProgrammingError, OperationalError):
            db.rollback()
            logger.warning("users table not found yet. Skipping seeding (run alembic upgrade head).")
            return

        ensure_user(db, "admin@itravel.local", "admin12345", "admin", "Admin")
        created = ensure_catalog(db)
        logger.info("Seed complete (%s catalog items added)", created)
    finally:
        db.close()


if __name__ == "__main__":
    from app.core.logging_config import configure_logging

    configure_logging()
    run()
