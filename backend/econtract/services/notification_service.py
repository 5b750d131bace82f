"""
Signature request notifications via Postmark.
When POSTMARK_SERVER_TOKEN is not configured, emails are logged instead of sent.
"""
import asyncio
import html
import logging
from datetime import datetime
from typing import Optional

from postmarker.core import PostmarkClient

logger = logging.getLogger(__name__)

TAG_SIGNATURE_REQUEST = "signature-request"


def build_signature_url(domain: str, contract_id: str, token: str) -> str:
    return f"{domain.rstrip('/')}/contracts/{contract_id}/sign/{token}"


class NotificationService:
    def __init__(self, server_token: Optional[str], sender: str):
        self.sender = sender
        if not server_token:
            logger.warning("POSTMARK_SERVER_TOKEN not set - emails will be logged but not sent")
            self.client = None
        else:
            self.client = PostmarkClient(server_token=server_token)
            logger.info("Postmark email client initialized")

    def _build_html_body(self, recipient_name: str, contract_title: str, signature_url: str, expires_at: datetime) -> str:
        return f"""
<p>Dear {html.escape(recipient_name)},</p>
<p>Please review and sign the contract <strong>{html.escape(contract_title)}</strong>.</p>
<p><a href="{html.escape(signature_url)}">Review and sign</a></p>
<p>This link expires on {expires_at.strftime('%d %B %Y at %H:%M UTC')}.</p>
"""

    def _build_text_body(self, recipient_name: str, contract_title: str, signature_url: str, expires_at: datetime) -> str:
        return (
            f"Dear {recipient_name},\n\n"
            f"Please review and sign the contract \"{contract_title}\":\n{signature_url}\n\n"
            f"This link expires on {expires_at.strftime('%d %B %Y at %H:%M UTC')}.\n"
        )

    async def send_signature_request(
        self,
        recipient_email: str,
        recipient_name: str,
        contract_title: str,
        signature_url: str,
        expires_at: datetime,
    ) -> Optional[str]:
        """Send the signing link. Returns the Postmark message id when sent."""
        subject = f"Signature requested: {contract_title}"

        if not self.client:
            logger.info(f"[EMAIL LOG ONLY] To: {recipient_email}, Subject: {subject}, URL: {signature_url}")
            return None

        html_body = self._build_html_body(recipient_name, contract_title, signature_url, expires_at)
        text_body = self._build_text_body(recipient_name, contract_title, signature_url, expires_at)

        loop = asyncio.get_running_loop()
        response = await loop.run_in_executor(
            None,
            lambda: self.client.emails.send(
                From=self.sender,
                To=recipient_email,
                Subject=subject,
                HtmlBody=html_body,
                TextBody=text_body,
                TrackOpens=True,
                TrackLinks="HtmlOnly",
                Tag=TAG_SIGNATURE_REQUEST,
            ),
        )
        logger.info(f"Signature request email sent to {recipient_email}: {response['MessageID']}")
        return response["MessageID"]
