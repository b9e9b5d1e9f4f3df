"""Transactional mail for account recovery."""

from __future__ import annotations

import hashlib
import logging
from email.message import EmailMessage

import aiosmtplib

from chatline.settings import settings

logger = logging.getLogger(__name__)

_RESET_TEXT = (
    "Hello,\n\n"
    "Someone asked to reset the password of your Chatline account.\n"
    "Open this link to choose a new one: {link}\n\n"
    "The link expires in {ttl} minutes. If it was not you, ignore this message.\n"
)

_RESET_HTML = (
    "<p>Hello,</p>"
    "<p>Someone asked to reset the password of your Chatline account.</p>"
    '<p><a href="{link}">Choose a new password</a></p>'
    "<p>The link expires in {ttl} minutes. If it was not you, ignore this message.</p>"
)


def mask_email(email: str) -> str:
    return hashlib.sha256(email.lower().encode("utf-8")).hexdigest()[:12]


def _build_message(to_email: str, subject: str, text: str, html: str) -> EmailMessage:
    msg = EmailMessage()
    msg["From"] = settings.smtp_from_email
    msg["To"] = to_email
    msg["Subject"] = subject
    msg.set_content(text)
    msg.add_alternative(html, subtype="html")
    return msg


async def _deliver(msg: EmailMessage, recipient: str) -> bool:
    """Hand a message to the configured relay; failures are logged, not raised."""
    if not settings.smtp_host:
        logger.warning("smtp not configured, dropping mail to %s", mask_email(recipient))
        return False
    # STARTTLS on 587, implicit TLS on 465.
    port = int(settings.smtp_port)
    try:
        await aiosmtplib.send(
            msg,
            hostname=settings.smtp_host,
            port=port,
            username=settings.smtp_user,
            password=settings.smtp_password,
            start_tls=bool(settings.smtp_tls) and port == 587,
            use_tls=bool(settings.smtp_tls) and port == 465,
        )
    except (aiosmtplib.SMTPException, OSError) as exc:
        logger.error("mail to %s failed: %s", mask_email(recipient), exc)
        return False
    logger.info("mail sent to %s", mask_email(recipient))
    return True


async def send_password_reset(email: str, link: str) -> bool:
    ttl = settings.password_reset_ttl_minutes
    msg = _build_message(
        email,
        "Reset your Chatline password",
        _RESET_TEXT.format(link=link, ttl=ttl),
        _RESET_HTML.format(link=link, ttl=ttl),
    )
    return await _deliver(msg, email)
