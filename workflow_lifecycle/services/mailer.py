import asyncio
import logging
import smtplib
from abc import ABC, abstractmethod
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional

from workflow_lifecycle.core.config import Settings

logger = logging.getLogger(__name__)

INVITE_SUBJECT = "You have been invited to a workflow automation instance"

INVITE_TEXT = """Hi,

You have been invited to join {domain}.

Accept the invitation by following this link:
{invite_accept_url}
"""

INVITE_HTML = """<p>Hi,</p>
<p>You have been invited to join <b>{domain}</b>.</p>
<p><a href="{invite_accept_url}">Accept the invitation</a></p>
"""


@dataclass
class SendResult:
    success: bool
    error: Optional[str] = None


class Mailer(ABC):
    """Delivers user management mails"""

    @abstractmethod
    async def invite(self, email: str, invite_accept_url: str, domain: str) -> SendResult:
        pass


class SMTPMailer(Mailer):
    """SMTP mailer; smtplib is blocking, so every send runs in a worker thread"""

    def __init__(
        self,
        smtp_host: str,
        smtp_port: int,
        smtp_username: str,
        smtp_password: str,
        sender_email: Optional[str] = None,
        sender_name: Optional[str] = None,
        use_ssl: bool = True,
        use_tls: bool = False,
        timeout: int = 30,
    ):
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_username = smtp_username
        self.smtp_password = smtp_password
        self.sender_email = sender_email or smtp_username
        self.sender_name = sender_name
        self.use_ssl = use_ssl
        self.use_tls = use_tls
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> "SMTPMailer":
        return cls(
            smtp_host=settings.smtp_host,
            smtp_port=settings.smtp_port,
            smtp_username=settings.smtp_username,
            smtp_password=settings.smtp_password,
            sender_email=settings.smtp_sender_email,
            sender_name=settings.smtp_sender_name,
            use_ssl=settings.smtp_use_ssl,
            use_tls=settings.smtp_use_tls,
            timeout=settings.smtp_timeout,
        )

    def _create_smtp_connection(self) -> smtplib.SMTP:
        if self.use_ssl:
            smtp = smtplib.SMTP_SSL(self.smtp_host, self.smtp_port, timeout=self.timeout)
        else:
            smtp = smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=self.timeout)
            if self.use_tls:
                smtp.starttls()

        smtp.login(self.smtp_username, self.smtp_password)
        return smtp

    def _create_message(self, subject: str, body: str, html_body: str, receiver_email: str) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = (
            f"{self.sender_name} <{self.sender_email}>" if self.sender_name else self.sender_email
        )
        msg["To"] = receiver_email
        msg.attach(MIMEText(body, "plain", "utf-8"))
        msg.attach(MIMEText(html_body, "html", "utf-8"))
        return msg

    def _send(self, msg: MIMEMultipart, receiver_email: str) -> None:
        smtp = self._create_smtp_connection()
        try:
            smtp.send_message(msg, from_addr=self.sender_email, to_addrs=[receiver_email])
        finally:
            smtp.quit()

    async def invite(self, email: str, invite_accept_url: str, domain: str) -> SendResult:
        msg = self._create_message(
            subject=INVITE_SUBJECT,
            body=INVITE_TEXT.format(domain=domain, invite_accept_url=invite_accept_url),
            html_body=INVITE_HTML.format(domain=domain, invite_accept_url=invite_accept_url),
            receiver_email=email,
        )

        try:
            await asyncio.to_thread(self._send, msg, email)
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Failed to send invite email to {email}: {e}")
            return SendResult(success=False, error=str(e))

        logger.info(f"Invite email sent successfully to {email}")
        return SendResult(success=True)


class DisabledMailer(Mailer):
    """Used when SMTP is not configured: logs the invite link, reports failure"""

    async def invite(self, email: str, invite_accept_url: str, domain: str) -> SendResult:
        logger.warning(f"SMTP not configured, invite for {email} not sent: {invite_accept_url}")
        return SendResult(success=False, error="SMTP is not configured")


def create_mailer(settings: Settings) -> Mailer:
    if settings.smtp_configured:
        return SMTPMailer.from_settings(settings)
    logger.warning("SMTP credentials not configured - invitation emails will be logged only")
    return DisabledMailer()
