"""
Microsoft Teams notifications through an incoming webhook connector.
"""

import logging
from typing import Dict

import requests

from errors import DeliveryError, TransientIOError
from models import DeliveryReceipt, Message, NotificationTarget

logger = logging.getLogger(__name__)

THEME_FAILURE = 'D70000'
THEME_DEGRADED = 'FFA500'


class TeamsNotifier:
    """Posts MessageCards to the channel's incoming webhook."""

    def __init__(self, webhook_url: str, timeout: float = 30):
        self.webhook_url = webhook_url
        self.timeout = timeout

    def build_card(self, target: NotificationTarget, message: Message) -> Dict:
        section = {
            "activityTitle": message.title,
            "text": message.text.replace('\n', '<br>'),
        }
        if message.fields:
            section["facts"] = [{"name": name, "value": value} for name, value in message.fields]

        card = {
            "@type": "MessageCard",
            "@context": "https://schema.org/extensions",
            "summary": message.title,
            "themeColor": THEME_DEGRADED if message.degraded else THEME_FAILURE,
            "sections": [section],
        }
        if message.link:
            card["potentialAction"] = [{
                "@type": "OpenUri",
                "name": "Build log",
                "targets": [{"os": "default", "uri": message.link}],
            }]
        return card

    def send(self, target: NotificationTarget, message: Message) -> DeliveryReceipt:
        try:
            response = requests.post(self.webhook_url, json=self.build_card(target, message), timeout=self.timeout)
        except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as e:
            raise TransientIOError(f"Teams unreachable: {e}") from e

        if response.status_code == 429 or response.status_code >= 500:
            raise TransientIOError(f"Teams returned HTTP {response.status_code}")
        if response.status_code >= 400:
            raise DeliveryError(f"Teams rejected the card for {target}: HTTP {response.status_code} {response.text[:200]}")

        logger.info("✅ Teams message sent to %s", target)
        return DeliveryReceipt(target)
