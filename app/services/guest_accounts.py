import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.security import generate_reset_token, generate_temp_password, hash_password
from app.models.password_reset_token import PasswordResetToken
from app.models.user import User

logger = logging.getLogger(__name__)


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


@dataclass(frozen=True)
class ResetToken:
    token: str
    expires_at: datetime


class SqlUserStore:
    """UserStore over the users table. The unique index on users.email is what makes creation race-safe."""

    def __init__(self, db: Session):
        self.db = db

    def find_by_email(self, email: str) -> User | None:
        return self.db.query(User).filter(User.email == normalize_email(email)).first()

    def create_with_temp_password(self, email: str, name: str) -> tuple[User, str]:
        """Insert a customer with a random password. Raises IntegrityError if the email now exists."""
        temp_password = generate_temp_password()
        user = User(
            id=str(uuid.uuid4()),
            email=normalize_email(email),
            full_name=name or "",
            role="customer",
            password_hash=hash_password(temp_password),
            must_change_password=True,
            is_active=True,
        )
        self.db.add(user)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise
        return user, temp_password

    def generate_password_reset_token(self, user_id: str) -> ResetToken:
        # Only the newest token stays usable.
        self.db.query(PasswordResetToken).filter(
            PasswordResetToken.user_id == user_id,
            PasswordResetToken.used == False,  # noqa: E712
        ).update({PasswordResetToken.used: True}, synchronize_session=False)
        expires_at = datetime.now(timezone.utc) + timedelta(hours=settings.PASSWORD_RESET_EXPIRY_HOURS)
        token = generate_reset_token()
        self.db.add(PasswordResetToken(id=str(uuid.uuid4()), user_id=user_id, token=token, expires_at=expires_at))
        self.db.commit()
        return ResetToken(token=token, expires_at=expires_at)

    def consume_password_reset_token(self, token: str, new_password: str) -> User | None:
        row = (
            self.db.query(PasswordResetToken)
            .filter(PasswordResetToken.token == token, PasswordResetToken.used == False)  # noqa: E712
            .first()
        )
        if not row:
            return None
        expires_at = row.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        if expires_at < datetime.now(timezone.utc):
            return None
        user = self.db.get(User, row.user_id)
        if not user or not user.is_active:
            return None
        row.used = True
        user.password_hash = hash_password(new_password)
        user.must_change_password = False
        self.db.commit()
        return user


@dataclass(frozen=True)
class GuestAccount:
    user: User
    is_new: bool
    temp_password: str | None = None
    reset_token: str | None = None
    reset_expires_at: datetime | None = None

    @property
    def temporary_credential_issued(self) -> bool:
        return self.temp_password is not None


class GuestAccountProvisioner:
    """Resolves the purchaser for a guest checkout, creating an account on first purchase.

    Sends nothing itself; the returned reset token is handed to the notifier by the caller.
    """

    def __init__(self, users: SqlUserStore):
        self.users = users

    def resolve_or_create(self, email: str, name: str) -> GuestAccount:
        email = normalize_email(email)
        existing = self.users.find_by_email(email)
        if existing:
            return GuestAccount(user=existing, is_new=False)

        try:
            user, temp_password = self.users.create_with_temp_password(email, name)
        except IntegrityError:
            # Another request created the same account first.
            existing = self.users.find_by_email(email)
            if existing is None:
                raise
            logger.info("Guest account for %s created concurrently; reusing user=%s", email, existing.id)
            return GuestAccount(user=existing, is_new=False)

        reset = self.users.generate_password_reset_token(user.id)
        logger.info("Created guest account user=%s", user.id)
        return GuestAccount(
            user=user,
            is_new=True,
            temp_password=temp_password,
            reset_token=reset.token,
            reset_expires_at=reset.expires_at,
        )
