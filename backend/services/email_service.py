from postmarker.core import PostmarkClient
from database import database
from models import MessageLog
from dataclasses import dataclass
from datetime import datetime, timezone
from html import escape
import os
import logging
from typing import Optional

logger = logging.getLogger(__name__)

# Verified sender in Postmark
DEFAULT_SENDER = os.getenv("EMAIL_SENDER", "no-reply@businessbooster.ai")


@dataclass
class EmailResult:
    delivered: bool
    sample: bool
    message: str
    message_id: Optional[str] = None


class EmailService:
    """Transactional email for payment requests. send() never raises."""

    def __init__(self, server_token: Optional[str] = None):
        postmark_token = server_token if server_token is not None else os.getenv("POSTMARK_SERVER_TOKEN")
        if not postmark_token:
            logger.warning("POSTMARK_SERVER_TOKEN not set - emails will be logged but not sent")
            self.client = None
        else:
            self.client = PostmarkClient(server_token=postmark_token)
            logger.info("Postmark email client initialized")

    async def send(
        self,
        to: str,
        subject: str,
        message: str,
        link: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> EmailResult:
        message_log = MessageLog(user_id=user_id, recipient=to, subject=subject)

        if not self.client:
            # Dev mode - just log
            message_log.status = "logged"
            message_log.sample = True
            result = EmailResult(
                delivered=False,
                sample=True,
                message="Email service not configured. Set POSTMARK_SERVER_TOKEN to send real email.",
            )
            logger.info(f"[DEV MODE] Email logged (not sent) to {to}")
        else:
            try:
                response = self.client.emails.send(
                    From=DEFAULT_SENDER,
                    To=to,
                    Subject=subject,
                    HtmlBody=self._build_html_body(message, link),
                    TextBody=message,
                    TrackLinks="HtmlOnly",
                    Tag="payment-request",
                )
                message_log.postmark_message_id = response["MessageID"]
                message_log.status = "sent"
                message_log.sent_at = datetime.now(timezone.utc)
                result = EmailResult(
                    delivered=True,
                    sample=False,
                    message="Email delivered successfully.",
                    message_id=response["MessageID"],
                )
                logger.info(f"Email sent to {to}: {response['MessageID']}")
            except Exception as e:
                message_log.status = "failed"
                message_log.error_message = str(e)
                result = EmailResult(delivered=False, sample=False, message=f"Unable to send email: {e}")
                logger.error(f"Failed to send email to {to}: {e}")

        await self._store_log(message_log)
        return result

    async def _store_log(self, message_log: MessageLog) -> None:
        try:
            db = database.get_db()
            await db.message_logs.insert_one(message_log.model_dump(mode="json"))
        except Exception as e:
            logger.error(f"Failed to store message log for {message_log.recipient}: {e}")

    def _build_html_body(self, message: str, link: Optional[str]) -> str:
        paragraphs = "".join(
            f'<p style="margin: 0 0 16px 0;">{escape(block).replace(chr(10), "<br>")}</p>'
            for block in message.split("\n\n") if block.strip()
        )
        button = ""
        if link:
            button = f"""
            <p style="margin: 24px 0;">
                <a href="{escape(link, quote=True)}" style="background: #4f46e5; color: #ffffff; padding: 12px 24px; border-radius: 6px; text-decoration: none;">Pay securely</a>
            </p>
            """
        return f"""
        <html>
        <body style="font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; color: #1f2937;">
            <div style="max-width: 600px; margin: 0 auto; padding: 24px;">
                {paragraphs}
                {button}
            </div>
        </body>
        </html>
        """


email_service = EmailService()
