"""Email integration for sending allotment letters over SMTP."""

import mimetypes
import smtplib
import logging
from dataclasses import dataclass
from email import encoders
from email.mime.base import MIMEBase
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import make_msgid
from html import escape
from pathlib import Path
from typing import Optional, List

from core.config import settings
from core.middleware.logging import mask_email

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EmailResult:
    """Outcome of one send attempt."""

    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


class EmailService:
    """Email service for sending emails via SMTP."""

    def __init__(
        self,
        smtp_host: Optional[str] = None,
        smtp_port: Optional[int] = None,
        smtp_user: Optional[str] = None,
        smtp_password: Optional[str] = None,
        from_email: Optional[str] = None,
        from_name: Optional[str] = None,
        use_tls: Optional[bool] = None,
        timeout: Optional[float] = None,
    ):
        """
        Initialize email service. Unset arguments fall back to settings.

        Args:
            smtp_host: SMTP server host
            smtp_port: SMTP server port
            smtp_user: SMTP username
            smtp_password: SMTP password
            from_email: Sender email
            from_name: Sender display name
            use_tls: Whether to upgrade the connection with STARTTLS
            timeout: Socket timeout in seconds for connect and send
        """
        self.smtp_host = smtp_host or settings.smtp_host
        self.smtp_port = smtp_port or settings.smtp_port
        self.smtp_user = smtp_user or settings.smtp_user
        self.smtp_password = smtp_password or settings.smtp_password
        self.from_email = from_email or settings.smtp_from_email
        self.from_name = from_name or settings.smtp_from_name
        self.use_tls = settings.smtp_use_tls if use_tls is None else use_tls
        self.timeout = timeout or settings.smtp_timeout_seconds

    def send(
        self,
        to: str,
        subject: str,
        html_body: str,
        attachments: Optional[List[str | Path]] = None,
    ) -> EmailResult:
        """
        Send one HTML email, optionally with file attachments.

        Transport failures are returned, not raised, so a caller sending a
        batch can record them per recipient.

        Args:
            to: Recipient email address
            subject: Email subject
            html_body: HTML email body
            attachments: File paths to attach

        Returns:
            EmailResult with the Message-ID on success or the error text
        """
        try:
            msg = MIMEMultipart()
            msg['From'] = f"{self.from_name} <{self.from_email}>"
            msg['To'] = to
            msg['Subject'] = subject
            msg['Message-ID'] = make_msgid(domain=self.from_email.split("@")[-1])
            msg.attach(MIMEText(html_body, 'html', 'utf-8'))

            for attachment_path in attachments or []:
                self._attach_file(msg, Path(attachment_path))

            with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=self.timeout) as server:
                if self.use_tls:
                    server.starttls()
                if self.smtp_user and self.smtp_password:
                    server.login(self.smtp_user, self.smtp_password)
                server.send_message(msg, from_addr=self.from_email, to_addrs=[to])

            logger.info(f"Email sent to {mask_email(to)}")
            return EmailResult(success=True, message_id=msg['Message-ID'])

        except (smtplib.SMTPException, OSError) as e:
            # OSError covers socket timeouts, refused connections and unreadable attachments
            logger.error(f"Failed to send email to {mask_email(to)}: {e}")
            return EmailResult(success=False, error=str(e) or type(e).__name__)

    def _attach_file(self, msg: MIMEMultipart, file_path: Path):
        """Attach a file to the email message."""
        content_type, _ = mimetypes.guess_type(file_path.name)
        maintype, subtype = (content_type or 'application/octet-stream').split('/', 1)

        with open(file_path, 'rb') as f:
            part = MIMEBase(maintype, subtype)
            part.set_payload(f.read())

        encoders.encode_base64(part)
        part.add_header(
            'Content-Disposition',
            'attachment',
            filename=file_path.name,
        )
        msg.attach(part)


class EmailTemplates:
    """Pre-configured email templates."""

    @staticmethod
    def allotment_letter(candidate_name: str, post_name: str, post_code: str) -> dict:
        """Allotment letter notification for a selected candidate."""
        name = escape(candidate_name or "Candidate")
        post = escape(post_name)
        code = escape(post_code)
        return {
            'subject': f'Allotment Letter - {post_name} ({post_code})',
            'html_body': f"""
                <html>
                <body>
                    <h2>Dear {name},</h2>
                    <p>Congratulations! You have been selected for the post of
                    <strong>{post} ({code})</strong>.</p>
                    <p>Please find your allotment letter attached to this email.
                    Keep a copy of it and follow the joining instructions mentioned
                    in the letter.</p>
                    <p>This is a system-generated email. Please do not reply.</p>
                    <p>Regards,<br>Recruitment Cell</p>
                </body>
                </html>
            """,
        }


# Global email service instance
_email_service: Optional[EmailService] = None


def get_email_service() -> EmailService:
    """Get or create global email service instance."""
    global _email_service
    if _email_service is None:
        _email_service = EmailService()
    return _email_service
