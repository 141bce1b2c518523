"""
Outbound email.

In development (or with no SMTP user configured) messages are logged
instead of sent, with the first link pulled out so it can be clicked
from the console.
"""
import logging
import re
import smtplib
from collections import deque
from email.message import EmailMessage

from config import settings

logger = logging.getLogger(__name__)


class Mailer:
    def __init__(self, host: str, port: int, user: str, password: str, sender: str, dev_mode: bool):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.sender = sender
        self.dev_mode = dev_mode or not user
        self.outbox = deque(maxlen=50)

    def send(self, to: str, subject: str, html: str):
        if self.dev_mode:
            link = re.search(r'href="([^"]+)"', html)
            logger.info("[mail] to=%s subject=%r link=%s", to, subject, link.group(1) if link else "-")
            self.outbox.append({"to": to, "subject": subject, "html": html})
            return

        message = EmailMessage()
        message["From"] = self.sender
        message["To"] = to
        message["Subject"] = subject
        message.set_content(re.sub(r"<[^>]+>", "", html))
        message.add_alternative(html, subtype="html")
        try:
            if self.port == 465:
                with smtplib.SMTP_SSL(self.host, self.port, timeout=30) as smtp:
                    smtp.login(self.user, self.password)
                    smtp.send_message(message)
            else:
                with smtplib.SMTP(self.host, self.port, timeout=30) as smtp:
                    smtp.starttls()
                    smtp.login(self.user, self.password)
                    smtp.send_message(message)
        except (smtplib.SMTPException, OSError):
            # background task: failures are logged only
            logger.exception("Failed to send email to %s", to)

    def send_verification_email(self, to: str, name: str, token: str):
        url = f"{settings.FRONTEND_URL}/verify-email?token={token}"
        self.send(
            to,
            "Verify your marketplace account",
            f'<p>Hi {name},</p><p>Please confirm your email address.</p>'
            f'<p><a href="{url}">Verify email</a></p>'
            f"<p>This link expires in {settings.EMAIL_TOKEN_EXPIRE_HOURS} hours.</p>",
        )

    def send_password_reset_email(self, to: str, name: str, token: str):
        url = f"{settings.FRONTEND_URL}/reset-password?token={token}"
        self.send(
            to,
            "Reset your password",
            f"<p>Hi {name},</p><p>We received a request to reset your password.</p>"
            f'<p><a href="{url}">Reset password</a></p>'
            f"<p>This link expires in {settings.RESET_TOKEN_EXPIRE_MINUTES} minutes. "
            "If you did not ask for this, ignore this email.</p>",
        )

    def send_order_confirmation(self, to: str, order_number: str, total_pesewas: int):
        url = f"{settings.FRONTEND_URL}/orders/{order_number}"
        self.send(
            to,
            f"Order {order_number} received",
            f"<p>Thanks for your order {order_number}.</p>"
            f"<p>Total: {settings.CURRENCY} {total_pesewas / 100:.2f}</p>"
            f'<p><a href="{url}">View order</a></p>',
        )


mailer = Mailer(
    settings.SMTP_HOST,
    settings.SMTP_PORT,
    settings.SMTP_USER,
    settings.SMTP_PASSWORD,
    settings.EMAIL_FROM,
    dev_mode=not settings.is_production,
)


def get_mailer():
    return mailer
