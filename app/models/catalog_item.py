from sqlalchemy import String, Integer, DateTime, Boolean
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime, timezone
from app.db.session import Base

class CatalogItem(Base):
    """A bookable item as published by the content side (tour, package, destination)."""
    __tablename__ = "catalog_items"

    # The same slug may be published in more than one catalog.
    id: Mapped[str] = mapped_column(String(100), primary_key=True)  # slug, e.g. "jerusalem-old-city"
    item_type: Mapped[str] = mapped_column(String(30), primary_key=True)  # day-tour, vacation-package, destination
    name: Mapped[str] = mapped_column(String(255))
    price_label: Mapped[str] = mapped_column(String(40), default="")  # as displayed, e.g. "€99"
    price_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)  # wins over price_label when set
    currency: Mapped[str] = mapped_column(String(3), default="eur")  # the currency price_label and price_cents are in
    # What gets booked: day-tour, vacation-package, car-rental, hotel. Destinations must set it.
    product_type: Mapped[str | None] = mapped_column(String(30), nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
