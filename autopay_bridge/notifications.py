"""Best-effort merchant notifications over SMTP.

Every public method is a result-discarding boundary: failures are logged here
and never reach the webhook that scheduled them.
"""
import logging
import smtplib
import ssl
from datetime import datetime
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from functools import lru_cache
from typing import Optional

from autopay_bridge.config import Settings, get_settings

logger = logging.getLogger(__name__)


def format_amount(amount: int, currency: str) -> str:
    """``49900, 'INR'`` -> ``'INR 499.00'``."""
    return f"{currency} {amount / 100:.2f}"


def call_now(func, *args, **kwargs):
    """Scheduler used outside a request: runs the notification inline."""
    func(*args, **kwargs)


class Notifier:
    def __init__(self, settings: Settings):
        self.settings = settings

    def send_setup_email(self, customer_name: str, customer_email: str, plan_name: str,
                         razorpay_subscription_id: str) -> None:
        fields = [
            ("Customer Name", customer_name),
            ("Customer Email", customer_email),
            ("Subscription Plan", plan_name),
            ("Razorpay Subscription ID", razorpay_subscription_id),
            ("Setup Date", datetime.now().strftime("%Y-%m-%d %H:%M:%S")),
        ]
        self._deliver(f"New Subscription Setup - {plan_name}", "New Subscription Setup", fields)

    def send_payment_email(self, customer_name: str, customer_email: str, plan_name: str,
                           amount: int, currency: str, shopify_order_id: Optional[str] = None) -> None:
        fields = [
            ("Customer Name", customer_name),
            ("Customer Email", customer_email),
            ("Subscription Plan", plan_name),
            ("Amount", format_amount(amount, currency)),
        ]
        if shopify_order_id:
            fields.append(("Shopify Order ID", shopify_order_id))
        fields.append(("Payment Date", datetime.now().strftime("%Y-%m-%d %H:%M:%S")))
        self._deliver(f"New Subscription Payment - {plan_name}", "New Subscription Payment Received", fields)

    def _deliver(self, subject: str, heading: str, fields) -> None:
        if not self.settings.smtp_configured or not self.settings.notification_email:
            logger.info("Email not configured - skipping notification: %s (%s)",
                        subject, ", ".join(str(value) for _, value in fields))
            return

        try:
            self._send(subject, heading, fields)
            logger.info("Notification sent to %s: %s", self.settings.notification_email, subject)
        except Exception:
            logger.exception("Failed to send notification: %s", subject)

    def _send(self, subject: str, heading: str, fields) -> None:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = self.settings.smtp_from or self.settings.smtp_user
        msg["To"] = self.settings.notification_email

        text = "\n".join([heading, ""] + [f"{label}: {value}" for label, value in fields])
        html = f"<h2>{heading}</h2>" + "".join(
            f"<p><strong>{label}:</strong> {value}</p>" for label, value in fields
        )
        msg.attach(MIMEText(text, "plain"))
        msg.attach(MIMEText(html, "html"))

        context = ssl.create_default_context()
        with smtplib.SMTP(self.settings.smtp_host, self.settings.smtp_port) as server:
            server.starttls(context=context)
            server.login(self.settings.smtp_user, self.settings.smtp_password)
            server.sendmail(msg["From"], [self.settings.notification_email], msg.as_string())


@lru_cache
def get_notifier() -> Notifier:
    return Notifier(get_settings())
