"""
Email Service for Authentication Notifications
"""

import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional

logger = logging.getLogger(__name__)


class EmailService:
    """
    send(to, subject, body) over SMTP.

    Without SMTP coordinates every send is a logged no-op. Port 465 uses
    implicit TLS, anything else STARTTLS.
    """

    def __init__(
        self,
        host: str = '',
        port: int = 587,
        username: str = '',
        password: str = '',
        sender: str = 'noreply@igrotrend.local',
        timeout: int = 10,
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.sender = sender
        self.timeout = timeout

    @classmethod
    def from_config(cls, settings) -> 'EmailService':
        return cls(
            host=settings.SMTP_HOST,
            port=settings.SMTP_PORT,
            username=settings.SMTP_USERNAME,
            password=settings.SMTP_PASSWORD,
            sender=settings.EMAIL_FROM,
            timeout=settings.SMTP_TIMEOUT,
        )

    @property
    def configured(self) -> bool:
        return bool(self.host and self.username and self.password)

    def send(self, to_email: str, subject: str, body_text: str, body_html: Optional[str] = None):
        """
        Raises:
            smtplib.SMTPException / OSError on transport failure; callers
            decide whether that is fatal.
        """
        if not self.configured:
            logger.info("SMTP not configured; email to %s not sent: %s", to_email, subject)
            logger.debug("Email body for %s:\n%s", to_email, body_text)
            return

        msg = MIMEMultipart('alternative')
        msg['Subject'] = subject
        msg['From'] = self.sender
        msg['To'] = to_email
        msg.attach(MIMEText(body_text, 'plain'))
        if body_html:
            msg.attach(MIMEText(body_html, 'html'))

        if self.port == 465:
            with smtplib.SMTP_SSL(self.host, self.port, timeout=self.timeout) as server:
                server.login(self.username, self.password)
                server.send_message(msg)
        else:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                server.starttls()
                server.login(self.username, self.password)
                server.send_message(msg)
        logger.info("Email sent to %s: %s", to_email, subject)

    def send_verification_code(self, to_email: str, code: str, minutes: int):
        body = (
            "Welcome to IgroTrend!\n\n"
            f"Your verification code is {code}.\n"
            f"It expires in {minutes} minutes.\n"
        )
        html = f"""
    <h2>Welcome to IgroTrend!</h2>
    <p>Your verification code is <strong>{code}</strong>.</p>
    <p>It expires in {minutes} minutes.</p>
    """
        self.send(to_email, "Your IgroTrend verification code", body, html)
