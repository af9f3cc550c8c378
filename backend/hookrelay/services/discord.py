"""Discord webhook formatting.

Discord rejects arbitrary JSON, so deliveries to a Discord webhook URL are
rewritten into a single embed instead of the raw event envelope.
"""

import json
import logging
from datetime import datetime
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

DISCORD_HOSTS = ("discord.com", "discordapp.com")

EMBED_COLOR_DEFAULT = 5814783  # blue
EMBED_COLORS = [
    ("created", 3066993),  # green
    ("updated", 15844367),  # gold
    ("deleted", 15158332),  # red
    ("published", 10181046),  # purple
]

MAX_FIELDS = 10
MAX_FIELD_VALUE = 100
MAX_CONTENT = 2000


def is_discord_webhook(url: str) -> bool:
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    hostname = (parsed.hostname or "").lower()
    return hostname in DISCORD_HOSTS and parsed.path.startswith("/api/webhooks")


def _embed_color(event: str) -> int:
    for keyword, color in EMBED_COLORS:
        if keyword in event:
            return color
    return EMBED_COLOR_DEFAULT


def _format_value(key: str, value) -> str:
    text = str(value)
    if len(text) > MAX_FIELD_VALUE:
        text = text[: MAX_FIELD_VALUE - 3] + "..."
    if (key.endswith("At") or key.endswith("_at") or key == "timestamp") and isinstance(
        value, str
    ):
        try:
            text = datetime.fromisoformat(value.replace("Z", "+00:00")).strftime(
                "%Y-%m-%d %H:%M:%S %Z"
            ).strip()
        except ValueError:
            pass
    return text


def _collect_fields(data: dict, prefix: str = "", fields: list | None = None) -> list:
    """Flatten scalar values into embed fields, one level of nesting deep."""
    if fields is None:
        fields = []
    for key, value in data.items():
        if len(fields) >= MAX_FIELDS:
            break
        if value is None:
            continue
        if isinstance(value, dict):
            if not prefix:
                _collect_fields(value, key, fields)
            continue
        name = f"{prefix}.{key}" if prefix else key
        fields.append(
            {
                "name": name[:1].upper() + name[1:],
                "value": _format_value(key, value),
                "inline": True,
            }
        )
    return fields


def to_discord_payload(payload: str) -> str:
    """Rewrite a serialized ``{event, timestamp, data}`` envelope as a Discord embed."""
    try:
        envelope = json.loads(payload)
        event = envelope["event"]
        data = envelope.get("data")
        embed = {
            "title": " ".join(part[:1].upper() + part[1:] for part in event.split(".")),
            "description": f"Event: `{event}`",
            "color": _embed_color(event),
            "fields": _collect_fields(data) if isinstance(data, dict) else [],
            "timestamp": envelope.get("timestamp"),
            "footer": {"text": "Webhook Event"},
        }
        return json.dumps({"embeds": [embed]}, ensure_ascii=False)
    except (ValueError, KeyError, TypeError, AttributeError) as e:
        logger.warning(f"Could not format payload for Discord, sending plain text: {e}")
        content = f"Webhook event received: {payload[:100]}..."
        return json.dumps({"content": content[:MAX_CONTENT]}, ensure_ascii=False)
