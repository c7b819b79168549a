from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import IntegrityError

from app.core.security import verify_password
from app.models.password_reset_token import PasswordResetToken
from app.models.user import User
from app.services.guest_accounts import GuestAccountProvisioner, SqlUserStore


@pytest.fixture
def users(db):
    return SqlUserStore(db)


@pytest.fixture
def provisioner(users):
    return GuestAccountProvisioner(users)


class TestResolveOrCreate:
    def test_creates_account_with_reset_token(self, db, provisioner):
        account = provisioner.resolve_or_create("  Guest@Example.COM ", "Guest Person")
        assert account.is_new
        assert account.user.email == "guest@example.com"
        assert account.user.must_change_password
        assert account.temporary_credential_issued
        assert verify_password(account.temp_password, account.user.password_hash)
        assert account.reset_token
        assert account.reset_expires_at > datetime.now(timezone.utc)
        assert db.query(PasswordResetToken).filter_by(user_id=account.user.id, used=False).count() == 1

    def test_existing_email_is_reused_case_insensitively(self, db, provisioner):
        first = provisioner.resolve_or_create("guest@example.com", "Guest")
        second = provisioner.resolve_or_create("GUEST@example.com", "Someone Else")
        assert not second.is_new
        assert second.user.id == first.user.id
        assert second.temp_password is None
        assert db.query(User).count() == 1

    def test_concurrent_creation_falls_back_to_existing(self, db):
        winner = User(id="u-1", email="race@example.com", full_name="Winner", password_hash="x")
        store = MagicMock()
        # First lookup misses, the insert then loses the race, the re-fetch finds the winner.
        store.find_by_email.side_effect = [None, winner]
        store.create_with_temp_password.side_effect = IntegrityError("INSERT", {}, Exception("unique"))

        account = GuestAccountProvisioner(store).resolve_or_create("race@example.com", "Loser")

        assert not account.is_new
        assert account.user is winner
        store.generate_password_reset_token.assert_not_called()

    def test_integrity_error_without_existing_row_propagates(self):
        store = MagicMock()
        store.find_by_email.return_value = None
        store.create_with_temp_password.side_effect = IntegrityError("INSERT", {}, Exception("boom"))
        with pytest.raises(IntegrityError):
            GuestAccountProvisioner(store).resolve_or_create("x@example.com", "X")

    def test_unique_constraint_is_enforced(self, db, users):
        users.create_with_temp_password("dup@example.com", "One")
        with pytest.raises(IntegrityError):
            users.create_with_temp_password("DUP@example.com", "Two")
        # Session is usable again after the rollback.
        assert users.find_by_email("dup@example.com") is not None


class TestPasswordReset:
    def test_new_token_invalidates_previous(self, db, users):
        user, _ = users.create_with_temp_password("a@example.com", "A")
        old = users.generate_password_reset_token(user.id)
        new = users.generate_password_reset_token(user.id)
        assert users.consume_password_reset_token(old.token, "new-password-1") is None
        assert users.consume_password_reset_token(new.token, "new-password-1") is not None

    def test_token_is_single_use(self, db, users):
        user, _ = users.create_with_temp_password("b@example.com", "B")
        reset = users.generate_password_reset_token(user.id)
        claimed = users.consume_password_reset_token(reset.token, "brand-new-pass")
        assert claimed.id == user.id
        assert not claimed.must_change_password
        assert verify_password("brand-new-pass", claimed.password_hash)
        assert users.consume_password_reset_token(reset.token, "another-pass") is None

    def test_expired_token_is_rejected(self, db, users):
        user, _ = users.create_with_temp_password("c@example.com", "C")
        reset = users.generate_password_reset_token(user.id)
        row = db.query(PasswordResetToken).filter_by(token=reset.token).one()
        row.expires_at = datetime.now(timezone.utc) - timedelta(minutes=1)
        db.commit()
        assert users.consume_password_reset_token(reset.token, "whatever-123") is None
