"""
Outgoing mail over SMTP.
Sending is skipped (and logged) when no SMTP account is configured.
"""
import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from .settings import settings

logger = logging.getLogger(__name__)


class Mailer:
    def __init__(
        self,
        host: str,
        port: int,
        user: str = "",
        password: str = "",
        from_email: str = "",
        from_name: str = "FilDAS",
    ):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.from_email = from_email or user
        self.from_name = from_name

    @classmethod
    def from_settings(cls) -> "Mailer":
        return cls(
            host=settings.SMTP_HOST,
            port=settings.SMTP_PORT,
            user=settings.SMTP_USER,
            password=settings.SMTP_PASSWORD,
            from_email=settings.SMTP_FROM_EMAIL,
            from_name=settings.SMTP_FROM_NAME,
        )

    @property
    def configured(self) -> bool:
        return bool(self.user and self.password)

    def send(self, to_email: str, subject: str, text_body: str) -> bool:
        """Send a plain-text message. Returns False instead of raising on failure."""
        if not self.configured:
            logger.warning("SMTP not configured, skipping mail to %s: %s", to_email, subject)
            return False

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = f"{self.from_name} <{self.from_email}>"
        msg["To"] = to_email
        msg.attach(MIMEText(text_body, "plain"))

        try:
            with smtplib.SMTP(self.host, self.port, timeout=30) as server:
                server.starttls()
                server.login(self.user, self.password)
                server.sendmail(self.from_email, to_email, msg.as_string())
        except smtplib.SMTPAuthenticationError:
            logger.error("SMTP authentication failed")
            return False
        except (smtplib.SMTPException, OSError) as e:
            logger.error("SMTP error sending to %s: %s", to_email, e)
            return False

        logger.info("Mail sent to %s: %s", to_email, subject)
        return True


def get_mailer() -> Mailer:
    return Mailer.from_settings()
