import smtplib
from email.message import EmailMessage
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

from rythmix.config import Settings, settings as default_settings


class SmtpMailer:
    """Transactional mail over SMTP, configured from ``Settings``."""

    def __init__(self, settings: Settings = default_settings):
        self.settings = settings

    def build_frontend_link(self, path: str, token: str) -> str:
        base = f"{self.settings.FRONTEND_URL.rstrip('/')}/{path.lstrip('/')}"
        parsed = urlparse(base)
        query = dict(parse_qsl(parsed.query, keep_blank_values=True))
        query["token"] = token
        return urlunparse(parsed._replace(query=urlencode(query)))

    def send(self, to_email: str, subject: str, text_body: str, html_body: str | None = None) -> None:
        if not self.settings.SMTP_HOST or not self.settings.SMTP_FROM_EMAIL:
            raise RuntimeError("SMTP is not configured (SMTP_HOST and SMTP_FROM_EMAIL are required).")

        message = EmailMessage()
        message["Subject"] = subject
        message["From"] = f"{self.settings.SMTP_FROM_NAME} <{self.settings.SMTP_FROM_EMAIL}>"
        message["To"] = to_email
        message.set_content(text_body)
        if html_body:
            message.add_alternative(html_body, subtype="html")

        with smtplib.SMTP(self.settings.SMTP_HOST, self.settings.SMTP_PORT) as smtp:
            smtp.ehlo()
            if self.settings.SMTP_USE_TLS:
                smtp.starttls()
                smtp.ehlo()
            if self.settings.SMTP_USER:
                smtp.login(self.settings.SMTP_USER, self.settings.SMTP_PASSWORD)
            smtp.send_message(message)

    def send_verify_email(self, to_email: str, username: str, token: str) -> None:
        link = self.build_frontend_link(self.settings.EMAIL_VERIFY_PATH, token)
        hours = self.settings.EMAIL_VERIFY_TOKEN_EXPIRE_HOURS
        text = (
            f"Hi {username},\n\n"
            "Welcome to Rythmix! Please confirm your email address by opening this link:\n"
            f"{link}\n\n"
            f"The link expires in {hours} hours. If you did not create this account, ignore this message."
        )
        html = (
            f"<p>Hi {username},</p>"
            "<p>Welcome to Rythmix! Please confirm your email address by clicking the link below:</p>"
            f"<p><a href=\"{link}\">Confirm email</a></p>"
            f"<p>The link expires in {hours} hours. If you did not create this account, ignore this message.</p>"
        )
        self.send(to_email=to_email, subject="Verify your email address - Rythmix", text_body=text, html_body=html)
