"""Email sender service - delivers alert mail via SMTP."""
import asyncio
import logging
import smtplib
import ssl
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import List

logger = logging.getLogger(__name__)


@dataclass
class EmailConfig:
    """SMTP configuration for sending emails."""
    host: str
    port: int
    username: str
    password: str
    use_tls: bool = True
    from_address: str = ""
    to_address: str = ""  # Comma-separated list of email addresses

    @classmethod
    def from_settings(cls, values: dict) -> "EmailConfig":
        return cls(
            host=values.get("smtp_host", ""),
            port=int(values.get("smtp_port") or 587),
            username=values.get("smtp_username", ""),
            password=values.get("smtp_password", ""),
            use_tls=values.get("smtp_use_tls", "1") == "1",
            from_address=values.get("alert_email_from", ""),
            to_address=values.get("alert_email_to", ""),
        )

    @property
    def recipients(self) -> List[str]:
        if not self.to_address:
            return []
        return [addr.strip() for addr in self.to_address.split(",") if addr.strip()]


class EmailSenderService:
    """Service for sending email alerts via SMTP."""

    def _build_message(self, config: EmailConfig, subject: str, body: str) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = config.from_address or config.username
        msg["To"] = ", ".join(config.recipients)
        msg.attach(MIMEText(body, "plain"))
        return msg

    def _send_blocking(self, config: EmailConfig, msg: MIMEMultipart):
        from_addr = config.from_address or config.username
        with smtplib.SMTP(config.host, config.port, timeout=30) as server:
            if config.use_tls:
                server.starttls(context=ssl.create_default_context())
            if config.username and config.password:
                server.login(config.username, config.password)
            server.sendmail(from_addr, config.recipients, msg.as_string())

    async def send_email(
        self,
        config: EmailConfig,
        subject: str,
        body: str,
    ) -> bool:
        """Send an email; returns True on success, False on any failure."""
        if not config.host or not config.recipients:
            logger.warning("Email not configured - missing host or recipients")
            return False

        msg = self._build_message(config, subject, body)
        try:
            await asyncio.to_thread(self._send_blocking, config, msg)
        except smtplib.SMTPAuthenticationError as e:
            logger.error(f"SMTP authentication failed for user '{config.username}': {e}")
            return False
        except smtplib.SMTPRecipientsRefused as e:
            logger.error(f"Recipients refused by server: {e}")
            return False
        except smtplib.SMTPException as e:
            logger.error(f"SMTP error: {type(e).__name__}: {e}")
            return False
        except (ConnectionRefusedError, TimeoutError) as e:
            logger.error(f"Could not reach {config.host}:{config.port}: {e}")
            return False
        except Exception as e:
            logger.error(f"Unexpected error sending email: {type(e).__name__}: {e}")
            return False

        logger.info(f"Email sent to {len(config.recipients)} recipient(s): {subject}")
        return True


# Global instance
email_sender_service = EmailSenderService()
