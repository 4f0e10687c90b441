"""Slack notifications for finished pipeline runs."""

import logging
import socket
from datetime import datetime
from typing import Optional, Protocol

import httpx

from .models import RunReport

logger = logging.getLogger(__name__)


class RunNotifier(Protocol):
    def notify(self, report: RunReport) -> bool:
        ...


def get_hostname() -> str:
    """Get the current hostname for context in notifications."""
    try:
        return socket.gethostname()
    except OSError:
        return "unknown"


class SlackNotifier:
    """Posts a run summary to a Slack incoming webhook."""

    def __init__(self, webhook_url: Optional[str], timeout: float = 10.0, client: Optional[httpx.Client] = None):
        self.webhook_url = webhook_url
        self.timeout = timeout
        self.client = client

    def build_payload(self, report: RunReport) -> dict:
        if report.errors or report.failed:
            emoji, title = "⚠️", "SEO Autofix Run Finished With Errors"
        else:
            emoji, title = "✅", "SEO Autofix Run Completed"

        message = (
            f"*Run ID:* `{report.run_id}`\n"
            f"*Applied:* {report.applied}\n"
            f"*Failed:* {report.failed}\n"
            f"*Rejected:* {report.rejected}\n"
            f"*Revised:* {report.revised} ({report.revision_approved} approved, {report.dropped} dropped)\n"
            f"*Consistency:* {report.consistency_score}/100"
        )
        if report.errors:
            message += f"\n*Errors:* {len(report.errors)}"
        if report.message:
            message += f"\n_{report.message}_"

        timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        return {
            "blocks": [
                {
                    "type": "header",
                    "text": {"type": "plain_text", "text": f"{emoji} {title}", "emoji": True},
                },
                {"type": "section", "text": {"type": "mrkdwn", "text": message}},
                {
                    "type": "context",
                    "elements": [
                        {"type": "mrkdwn", "text": f"Server: `{get_hostname()}` | Time: `{timestamp}`"}
                    ],
                },
            ],
        }

    def notify(self, report: RunReport) -> bool:
        """Send the run summary.

        Returns:
            True if the notification was sent successfully, False otherwise.
        """
        if not self.webhook_url:
            logger.debug(f"Slack disabled, skipping notification for run {report.run_id}")
            return False

        payload = self.build_payload(report)
        try:
            if self.client is not None:
                response = self.client.post(self.webhook_url, json=payload, timeout=self.timeout)
            else:
                response = httpx.post(self.webhook_url, json=payload, timeout=self.timeout)
            return response.status_code == 200
        except httpx.HTTPError as e:
            logger.warning(f"Failed to send Slack notification: {e}")
            return False
