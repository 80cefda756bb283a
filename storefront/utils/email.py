import logging
import smtplib
from email.message import EmailMessage
from typing import Optional

from storefront.core.config import settings

logger = logging.getLogger(__name__)

SMTPS_PORT = 465


def build_email(
    *,
    to: str,
    subject: str,
    text: str,
    html: Optional[str] = None,
    from_email: Optional[str] = None,
) -> EmailMessage:
    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = from_email or f"{settings.EMAILS_FROM_NAME} <{settings.EMAILS_FROM_EMAIL}>"
    msg["To"] = to
    msg.set_content(text)

    if html:
        msg.add_alternative(html, subtype="html")

    return msg


def send_email_smtp(msg: EmailMessage) -> None:
    """
    Send an email message over SMTP.
    This is intended to be called from Celery workers, not request handlers.
    """
    if settings.SMTP_PORT == SMTPS_PORT:
        client = smtplib.SMTP_SSL(settings.SMTP_HOST, settings.SMTP_PORT, timeout=30)
    else:
        client = smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT, timeout=30)

    with client as server:
        server.ehlo()
        if not isinstance(server, smtplib.SMTP_SSL) and server.has_extn("starttls"):
            server.starttls()
            server.ehlo()
        if settings.SMTP_USER and settings.SMTP_PASSWORD:
            server.login(settings.SMTP_USER, settings.SMTP_PASSWORD)
        server.send_message(msg)
    logger.info("email_sent to=%s subject=%s", msg["To"], msg["Subject"])
