import os
import smtplib
import uuid
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from email.utils import formatdate
from typing import Optional
from jinja2 import Environment, FileSystemLoader, select_autoescape

from core.config import SMTP_HOST, SMTP_PORT, SMTP_USER, SMTP_PASS, MAIL_FROM, APP_NAME, CLIENT_URL, logger

# Jinja env
_templates_dir = os.path.join(os.path.dirname(__file__), "..", "templates")
_jinja_env = Environment(
    loader=FileSystemLoader(_templates_dir),
    autoescape=select_autoescape(["html", "xml"]),
)

EMAIL_BRAND_ACCENT = os.getenv("EMAIL_BRAND_ACCENT", "#8B5E34")
EMAIL_BRAND_BG = os.getenv("EMAIL_BRAND_BG", "#FAF7F2")


def render_email(template_name: str, **context) -> str:
    base = {
        "app_name": APP_NAME,
        "brand_bg": EMAIL_BRAND_BG,
        "accent": EMAIL_BRAND_ACCENT,
        "client_url": CLIENT_URL,
    }
    base.update(context or {})
    return _jinja_env.get_template(template_name).render(**base)


def send_email_smtp(
    to_addr: str,
    subject: str,
    html: str,
    text: Optional[str] = None,
    from_addr: Optional[str] = None,
    reply_to: Optional[str] = None,
) -> bool:
    try:
        if not SMTP_HOST or not SMTP_PASS or not MAIL_FROM:
            logger.error("[email] SMTP not configured; cannot send email")
            return False
        sender = (from_addr or MAIL_FROM).strip()
        domain = sender.split("@")[-1].strip(">") if "@" in sender else "muraqqa.art"

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = sender
        msg["To"] = to_addr
        msg["Message-ID"] = f"<{uuid.uuid4()}@{domain}>"
        msg["Date"] = formatdate(usegmt=True)
        if reply_to:
            msg["Reply-To"] = reply_to
        if not text:
            text = "Open this message in an HTML-capable email client."
        msg.attach(MIMEText(text, "plain", _charset="utf-8"))
        msg.attach(MIMEText(html or "", "html", _charset="utf-8"))

        envelope_from = sender.split("<")[-1].strip(">").strip() if "<" in sender else sender
        with smtplib.SMTP(SMTP_HOST, SMTP_PORT) as server:
            server.starttls()
            if SMTP_USER or SMTP_PASS:
                server.login(SMTP_USER, SMTP_PASS)
            server.sendmail(envelope_from, [to_addr], msg.as_string())
        return True
    except Exception as ex:
        logger.exception(f"[email] SMTP send failed: {ex}")
        return False
