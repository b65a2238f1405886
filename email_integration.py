import logging
import os
import time
from dataclasses import dataclass

import requests

logger = logging.getLogger(__name__)

RESEND_API_URL = "https://api.resend.com/emails"
DEFAULT_FROM = "SportsLadder <no-reply@sportsladder.nl>"
DEFAULT_REPLY_TO = "no-reply@sportsladder.nl"
MAX_RETRIES = 4


@dataclass(frozen=True)
class EmailMessage:
    to: str
    subject: str
    html: str
    text: str


@dataclass(frozen=True)
class SendResult:
    ok: bool
    status: int
    body: str


class ResendClient:
    def __init__(self,
                 api_key: str | None = None,
                 sender: str | None = None,
                 reply_to: str | None = None,
                 sleep=time.sleep):
        self.api_key = api_key or os.environ.get("RESEND_API_KEY", "")
        self.sender = sender or os.environ.get("RESEND_FROM", DEFAULT_FROM)
        self.reply_to = reply_to or os.environ.get("RESEND_REPLY_TO", DEFAULT_REPLY_TO)
        self.sleep = sleep

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    @staticmethod
    def _backoff_seconds(response, attempt: int) -> float:
        try:
            retry_after = float(response.headers.get("Retry-After", ""))
        except ValueError:
            retry_after = 0
        if retry_after > 0:
            return retry_after
        return 0.5 * (2 ** attempt)

    def send(self, message: EmailMessage) -> SendResult:
        """
        Send one email through the Resend API.
        Only 429 responses are retried (up to MAX_RETRIES times), waiting for
        Retry-After seconds when given, else 0.5s doubled per attempt.
        Returns SendResult(ok, status, body)
        """
        if not self.api_key:
            logger.warning("[EMAIL] RESEND_API_KEY not configured, skipping email to %s", message.to)
            return SendResult(False, 0, "RESEND_API_KEY not configured")

        # Testing mode: redirect all emails to test address
        to_email = message.to
        testing_mode = os.environ.get("TESTING_MODE", "false").lower() == "true"
        if testing_mode:
            to_email = os.environ.get("TEST_EMAIL_RECIPIENT", to_email)
            logger.info("[EMAIL TEST MODE] Redirecting email from %s to %s", message.to, to_email)

        payload = {
            "from": self.sender,
            "to": [to_email],
            "subject": message.subject,
            "html": message.html,
            "text": message.text,
            "reply_to": self.reply_to,
        }

        attempt = 0
        while True:
            try:
                resp = requests.post(RESEND_API_URL, headers=self._headers(), json=payload, timeout=20)
            except requests.RequestException as e:
                logger.error("[EMAIL ERROR] Failed to send to %s: %s", to_email, e)
                return SendResult(False, 0, str(e))

            if resp.ok:
                logger.info("[EMAIL] Sent to %s: %s", to_email, message.subject)
                return SendResult(True, resp.status_code, resp.text)

            if resp.status_code != 429 or attempt >= MAX_RETRIES:
                logger.error("[EMAIL ERROR] status=%s to=%s body=%s", resp.status_code, to_email, resp.text)
                return SendResult(False, resp.status_code, resp.text)

            delay = self._backoff_seconds(resp, attempt)
            logger.warning("[EMAIL] Rate limited sending to %s, retrying in %.1fs", to_email, delay)
            self.sleep(delay)
            attempt += 1
