import os

# Settings are read at import time; point them at throwaway values first.
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["PAYMENTS_SANDBOX"] = "true"
os.environ["PAYMENTS_WEBHOOK_VERIFY"] = "false"
os.environ["CLIENT_BASE_URL"] = "https://itravel.test"

import uuid  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from app.core.security import create_access_token, hash_password  # noqa: E402
from app.db.session import Base, get_db  # noqa: E402
from app.models.audit_log import AuditLog  # noqa: E402,F401
from app.models.booking import Booking  # noqa: E402,F401
from app.models.catalog_item import CatalogItem  # noqa: E402
from app.models.email_log import EmailLog  # noqa: E402,F401
from app.models.password_reset_token import PasswordResetToken  # noqa: E402,F401
from app.models.user import User  # noqa: E402
from app.services.container import Services  # noqa: E402
from app.services.payment_gateway import SandboxGateway  # noqa: E402


class RecordingNotifier:
    """Stands in for EmailNotifier; records calls and can be told to fail."""

    def __init__(self):
        self.sent = []
        self.fail = False

    def _record(self, kind, **kw):
        if self.fail:
            raise RuntimeError("smtp down")
        self.sent.append((kind, kw))
        return True

    def kinds(self):
        return [k for k, _ in self.sent]

    def send_booking_confirmation(self, booking):
        return self._record("confirmation", booking_id=booking.id)

    def send_deposit_received(self, booking):
        return self._record("deposit_received", booking_id=booking.id)

    def send_approval_decision(self, booking, approved, reason=None):
        return self._record("approval_decision", booking_id=booking.id, approved=approved, reason=reason)

    def send_welcome(self, email, name, reset_token, expires_at=None, booking_id=""):
        return self._record("welcome", email=email, token=reset_token, booking_id=booking_id)


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite+pysqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(eng)
    yield eng
    Base.metadata.drop_all(eng)
    eng.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(bind=engine, autoflush=False)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def catalog(db):
    items = [
        CatalogItem(id="jerusalem-old-city", item_type="day-tour", name="Jerusalem Old City", price_label="€100"),
        CatalogItem(id="holy-land-7-days", item_type="vacation-package", name="Holy Land 7 Days", price_label="€1,000"),
        CatalogItem(id="eilat", item_type="destination", product_type="car-rental", name="Eilat Car Rental",
                    price_label="€55"),
        CatalogItem(id="haifa", item_type="destination", name="Haifa (no product yet)", price_label="€180"),
        CatalogItem(id="unpriced-tour", item_type="day-tour", name="Price on request", price_label="Call us"),
    ]
    db.add_all(items)
    db.commit()
    return {i.id: i for i in items}


@pytest.fixture
def gateway():
    return SandboxGateway()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def services(gateway, notifier):
    return Services(gateway=gateway, notifier_factory=lambda _db: notifier)


@pytest.fixture
def lifecycle(services, db):
    return services.lifecycle(db)


@pytest.fixture
def orchestrator(services, db, catalog):
    return services.orchestrator(db)


@pytest.fixture
def workflow(services, db):
    return services.workflow(db)


def make_user(db, email, role="customer", password="secret123"):
    user = User(
        id=str(uuid.uuid4()),
        email=email,
        full_name=email.split("@")[0],
        role=role,
        password_hash=hash_password(password),
        is_active=True,
    )
    db.add(user)
    db.commit()
    return user


@pytest.fixture
def admin(db):
    return make_user(db, "admin@itravel.test", role="admin", password="admin12345")


def auth_headers(user):
    return {"Authorization": f"Bearer {create_access_token(user.id)}"}


@pytest.fixture
def client(services, db, catalog):
    from app.main import create_app

    app = create_app(services)

    def _get_db():
        yield db

    app.dependency_overrides[get_db] = _get_db
    with TestClient(app) as c:
        yield c
