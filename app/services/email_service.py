import logging
import smtplib
import uuid
from datetime import datetime, timezone
from email.message import EmailMessage

import requests
from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.booking import Booking
from app.models.email_log import EmailLog

logger = logging.getLogger(__name__)

MAX_SEND_ATTEMPTS = 5
_CURRENCY_SYMBOLS = {"eur": "€", "usd": "$", "gbp": "£", "ils": "₪"}


def queue_email(db: Session, to_email: str, subject: str, body: str, kind: str = "", booking_id: str = "") -> str:
    """Queue and attempt immediate send. Body is stored so the worker can retry on failure."""
    eid = str(uuid.uuid4())
    log = EmailLog(
        id=eid,
        to_email=to_email,
        subject=subject,
        body=body,
        kind=kind,
        status="queued",
        attempts=0,
        related_booking_id=booking_id or "",
    )
    db.add(log)
    db.commit()

    log.attempts = 1
    try:
        send_email(to_email, subject, body)
        log.status = "sent"
        log.sent_at = datetime.now(timezone.utc)
    except Exception:
        # process_email_queue retries it
        logger.exception("Sending %s email %s to %s failed", kind or "booking", eid, to_email)
        log.status = "failed"
    db.commit()
    return eid


def send_email(to_email: str, subject: str, body: str) -> None:
    """Send via SendGrid if configured, otherwise SMTP (MailHog recommended for local)."""
    if settings.SENDGRID_API_KEY:
        _send_via_sendgrid(to_email, subject, body)
        return

    msg = EmailMessage()
    msg["From"] = settings.SMTP_FROM
    msg["To"] = to_email
    msg["Subject"] = subject
    msg.set_content(body)

    with smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT, timeout=10) as smtp:
        if settings.SMTP_USERNAME:
            smtp.login(settings.SMTP_USERNAME, settings.SMTP_PASSWORD)
        smtp.send_message(msg)


def _send_via_sendgrid(to_email: str, subject: str, body: str) -> None:
    payload = {
        "personalizations": [{"to": [{"email": to_email}]}],
        "from": {"email": settings.SENDGRID_FROM_EMAIL or settings.SMTP_FROM},
        "subject": subject,
        "content": [{"type": "text/plain", "value": body}],
    }
    r = requests.post(
        "https://api.sendgrid.com/v3/mail/send",
        json=payload,
        headers={"Authorization": f"Bearer {settings.SENDGRID_API_KEY}"},
        timeout=20,
    )
    if r.status_code >= 400:
        raise RuntimeError(f"SendGrid error {r.status_code}: {r.text}")


def process_pending_emails(db: Session, limit: int = 50, max_attempts: int = MAX_SEND_ATTEMPTS) -> dict:
    """Retry up to `limit` queued or failed emails that still have attempts left. Returns counts."""
    pending = (
        db.query(EmailLog)
        .filter(
            EmailLog.status.in_(["queued", "failed"]),
            EmailLog.attempts < max_attempts,
            EmailLog.body.isnot(None),
            EmailLog.body != "",
        )
        .order_by(EmailLog.created_at.asc())
        .limit(limit)
        .all()
    )
    sent, failed = 0, 0
    for log in pending:
        log.attempts = (log.attempts or 0) + 1
        try:
            send_email(log.to_email, log.subject, log.body)
            log.status = "sent"
            log.sent_at = datetime.now(timezone.utc)
            sent += 1
        except Exception:
            logger.warning("Retry %s of email %s failed", log.attempts, log.id, exc_info=True)
            log.status = "failed"
            failed += 1
    if pending:
        db.commit()
    return {"processed": len(pending), "sent": sent, "failed": failed}


def format_money(cents: int | None, currency: str = "eur") -> str:
    symbol = _CURRENCY_SYMBOLS.get((currency or "").lower(), "")
    amount = f"{(cents or 0) // 100:,}.{(cents or 0) % 100:02d}"
    return f"{symbol}{amount}" if symbol else f"{amount} {currency.upper()}"


def reset_link(token: str) -> str:
    return f"{settings.CLIENT_BASE_URL.rstrip('/')}/auth/reset-password?token={token}"


class EmailNotifier:
    """Booking notifications. Best-effort: failures are logged, never raised to the caller."""

    def __init__(self, db: Session):
        self.db = db

    def _deliver(self, to_email: str, subject: str, body: str, kind: str, booking_id: str = "") -> bool:
        try:
            queue_email(self.db, to_email, subject, body, kind=kind, booking_id=booking_id)
            return True
        except Exception:
            logger.exception("Could not queue %s email for booking %s", kind, booking_id or "-")
            try:
                self.db.rollback()
            except Exception:
                logger.exception("Rollback after email failure also failed")
            return False

    def send_booking_confirmation(self, booking: Booking) -> bool:
        paid = booking.total_amount_cents
        lines = [
            f"Hello {booking.booker_name},",
            "",
            f"Your booking for {booking.tour_name or booking.tour_id} is confirmed.",
            f"Booking reference: {booking.id}",
            f"Travelers: {booking.adults} adult(s), {booking.children} child(ren)",
        ]
        if booking.selected_date:
            lines.append(f"Date: {booking.selected_date:%Y-%m-%d}")
        if booking.payment_method == "cash-on-arrival":
            lines.append(f"Amount due on arrival: {format_money(paid, booking.currency)}")
        elif booking.payment_status == "deposit_paid":
            lines.append(f"Deposit paid: {format_money(booking.deposit_amount_cents, booking.currency)}")
            lines.append(f"Balance due: {format_money(booking.balance_amount_cents, booking.currency)}")
        else:
            lines.append(f"Total paid: {format_money(paid, booking.currency)}")
        lines += ["", "We look forward to seeing you."]
        return self._deliver(booking.booker_email, f"Booking confirmed - {booking.tour_name or booking.tour_id}",
                             "\n".join(lines), "confirmation", booking.id)

    def send_deposit_received(self, booking: Booking) -> bool:
        body = "\n".join([
            f"Hello {booking.booker_name},",
            "",
            f"We received your deposit of {format_money(booking.deposit_amount_cents, booking.currency)} "
            f"for {booking.tour_name or booking.tour_id}.",
            "Our team is reviewing availability and will confirm your booking within 24 hours.",
            f"Booking reference: {booking.id}",
        ])
        return self._deliver(booking.booker_email, "Deposit received - booking under review", body,
                             "deposit_received", booking.id)

    def send_approval_decision(self, booking: Booking, approved: bool, reason: str | None = None) -> bool:
        name = booking.tour_name or booking.tour_id
        if approved:
            subject = f"Booking approved - {name}"
            lines = [f"Hello {booking.booker_name},", "", f"Good news: your booking for {name} is approved and confirmed."]
            if booking.balance_amount_cents:
                lines.append(f"Remaining balance: {format_money(booking.balance_amount_cents, booking.currency)}")
        else:
            subject = f"Booking update - {name}"
            lines = [
                f"Hello {booking.booker_name},",
                "",
                f"Unfortunately we could not confirm your booking for {name}.",
                f"Reason: {reason or booking.rejection_reason or 'not specified'}",
                "Any payment taken will be refunded.",
            ]
        lines.append(f"Booking reference: {booking.id}")
        return self._deliver(booking.booker_email, subject, "\n".join(lines), "approval_decision", booking.id)

    def send_welcome(self, email: str, name: str, reset_token: str, expires_at: datetime | None = None,
                     booking_id: str = "") -> bool:
        lines = [
            f"Hello {name},",
            "",
            "An account was created for you with your booking.",
            f"Set your password here: {reset_link(reset_token)}",
        ]
        if expires_at:
            lines.append(f"This link expires on {expires_at:%Y-%m-%d %H:%M} UTC.")
        return self._deliver(email, f"Welcome to {settings.APP_NAME}", "\n".join(lines), "welcome", booking_id)
