"""
Slack notification module for sending build failure analyses.
"""

import logging
from typing import Dict, List

import requests

from errors import DeliveryError, TransientIOError
from models import DeliveryReceipt, Message, NotificationTarget

logger = logging.getLogger(__name__)

SLACK_POST_MESSAGE_URL = "https://slack.com/api/chat.postMessage"

# Slack API errors worth retrying; anything else is a permanent rejection
RETRYABLE_ERRORS = {'ratelimited', 'internal_error', 'fatal_error', 'service_unavailable', 'request_timeout'}

SECTION_LIMIT = 3000


class SlackNotifier:
    """Handles Slack notifications through the Web API."""

    def __init__(self, bot_token: str, timeout: float = 30, api_url: str = SLACK_POST_MESSAGE_URL):
        self.bot_token = bot_token
        self.timeout = timeout
        self.api_url = api_url

    def _blocks(self, message: Message) -> List[Dict]:
        blocks = [
            {
                "type": "header",
                "text": {
                    "type": "plain_text",
                    "text": message.title[:150],
                    "emoji": True
                }
            }
        ]
        if message.fields:
            blocks.append({
                "type": "context",
                "elements": [
                    {"type": "mrkdwn", "text": f"*{name}:* {value}"}
                    for name, value in message.fields
                ]
            })
        blocks.append({"type": "divider"})
        blocks.append({
            "type": "section",
            "text": {
                "type": "mrkdwn",
                "text": message.text[:SECTION_LIMIT]
            }
        })
        if message.link:
            blocks.append({
                "type": "section",
                "text": {
                    "type": "mrkdwn",
                    "text": f"<{message.link}|🔗 Build log>"
                }
            })
        return blocks

    def build_payload(self, target: NotificationTarget, message: Message) -> Dict:
        return {
            "channel": target.channel,
            "text": message.title,
            "blocks": self._blocks(message),
        }

    def send(self, target: NotificationTarget, message: Message) -> DeliveryReceipt:
        """Post *message* to the target channel and return the Slack message timestamp."""
        headers = {
            "Authorization": f"Bearer {self.bot_token}",
            "Content-Type": "application/json; charset=utf-8"
        }
        try:
            response = requests.post(self.api_url, headers=headers, json=self.build_payload(target, message),
                                     timeout=self.timeout)
        except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as e:
            raise TransientIOError(f"Slack unreachable: {e}") from e

        if response.status_code == 429 or response.status_code >= 500:
            raise TransientIOError(f"Slack returned HTTP {response.status_code}")
        if response.status_code >= 400:
            raise DeliveryError(f"Slack returned HTTP {response.status_code}")

        result = response.json()
        if result.get("ok"):
            logger.info("✅ Slack message sent to %s", target.channel)
            return DeliveryReceipt(target, result.get("ts"))

        error = result.get('error', 'Unknown error')
        if error in RETRYABLE_ERRORS:
            raise TransientIOError(f"Slack API error: {error}")
        raise DeliveryError(f"Slack API error for {target.channel}: {error}")
