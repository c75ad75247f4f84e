from dataclasses import dataclass, field
from html import escape
from typing import Any, Dict, Optional

from billcountdown.config.settings import settings
from billcountdown.db.models import Bill


@dataclass
class PushMessage:
    title: str
    body: str
    tag: str
    url: str = "/"
    data: Dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> Dict[str, Any]:
        """JSON payload read by the service worker."""
        return {
            "title": self.title,
            "body": self.body,
            "tag": self.tag,
            "url": self.url,
            "data": self.data,
        }


def due_phrase(days_until_due: int) -> str:
    if days_until_due == 0:
        return "due today"
    if days_until_due == 1:
        return "due tomorrow"
    if days_until_due > 1:
        return f"due in {days_until_due} days"
    overdue = -days_until_due
    return f"{overdue} day{'s' if overdue != 1 else ''} overdue"


def format_amount(amount: Optional[float]) -> Optional[str]:
    if amount is None:
        return None
    return f"${amount:,.2f}"


def _bill_url(bill: Bill) -> str:
    return f"{settings.APP_URL.rstrip('/')}/bills/{bill.id}"


def build_reminder_email(bill: Bill, days_until_due: int) -> Dict[str, str]:
    """Subject, HTML and plain text body for a bill reminder."""
    phrase = due_phrase(days_until_due)
    amount = format_amount(bill.amount)
    subject = f"{bill.emoji} {bill.name} is {phrase}"
    if amount:
        subject = f"{subject} ({amount})"

    lines = [f"{bill.name} is {phrase}."]
    if amount:
        lines.append(f"Amount: {amount}")
    lines.append(f"Due date: {bill.due_date.strftime('%A, %B %d, %Y')}")
    if bill.payment_url:
        lines.append(f"Pay now: {bill.payment_url}")
    lines.append(f"View bill: {_bill_url(bill)}")
    text = "\n".join(lines)

    action_url = bill.payment_url or _bill_url(bill)
    action_label = "Pay now" if bill.payment_url else "View bill"
    amount_html = f"<p style=\"font-size:24px;margin:8px 0\">{escape(amount)}</p>" if amount else ""
    html = (
        "<div style=\"font-family:-apple-system,Segoe UI,sans-serif;max-width:480px\">"
        f"<h2>{escape(bill.emoji)} {escape(bill.name)}</h2>"
        f"<p>This bill is <strong>{escape(phrase)}</strong>.</p>"
        f"{amount_html}"
        f"<p>Due {escape(bill.due_date.strftime('%A, %B %d, %Y'))}</p>"
        f"<p><a href=\"{escape(action_url, quote=True)}\">{action_label}</a></p>"
        "</div>"
    )
    return {"subject": subject, "html": html, "text": text}


def build_reminder_push(bill: Bill, days_until_due: int) -> PushMessage:
    phrase = due_phrase(days_until_due)
    amount = format_amount(bill.amount)
    body = f"{amount} {phrase}" if amount else phrase.capitalize()
    return PushMessage(
        title=f"{bill.emoji} {bill.name}",
        body=body,
        tag=f"bill-{bill.id}",
        url=f"/bills/{bill.id}",
        data={"billId": bill.id, "daysUntilDue": days_until_due},
    )


def build_sync_summary_push(bills_created: int, needs_review: int) -> Optional[PushMessage]:
    """Summary after a mailbox sync; None when nothing was found."""
    parts = []
    if bills_created > 0:
        parts.append(f"{bills_created} new bill{'s' if bills_created != 1 else ''} added")
    if needs_review > 0:
        parts.append(f"{needs_review} need{'s' if needs_review == 1 else ''} review")
    if not parts:
        return None
    return PushMessage(
        title="New Bills Detected",
        body=", ".join(parts),
        tag="sync-summary",
        url="/review" if needs_review > 0 else "/dashboard",
        data={"billsCreated": bills_created, "needsReview": needs_review},
    )
