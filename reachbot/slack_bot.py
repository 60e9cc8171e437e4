import re
import logging
import threading
from typing import Optional

from slack_bolt import App
from slack_bolt.adapter.socket_mode import SocketModeHandler
from slack_sdk.errors import SlackApiError

from reachbot.config import (
    SLACK_BOT_TOKEN, SLACK_APP_TOKEN, ANTHROPIC_API_KEY, GEMINI_API_KEY, LLM_PROVIDER, MIN_PHONE_DIGITS,
)
from reachbot.errors import DeliveryError
from reachbot.transport import Attachment, InboundMessage, Transport, deliver_inbound

logger = logging.getLogger(__name__)

# Defer App initialization to start() so module can be imported without auth
_app: App | None = None

_LINK_RE = re.compile(r"<((?:https?|mailto):[^>|]+)(?:\|[^>]*)?>")
_MENTION_RE = re.compile(r"<@[A-Z0-9]+>\s*")
TYPING_PLACEHOLDER = ":hourglass_flowing_sand: typing..."
APOLOGY_MESSAGE = ":warning: Sorry, I ran into an issue handling your message. Please try again."


def unwrap_slack_markup(text: str) -> str:
    """Turn Slack link markup back into plain URLs and drop bot mentions."""
    text = _LINK_RE.sub(lambda m: m.group(1), text or "")
    return _MENTION_RE.sub("", text).strip()


def _digits(value: str) -> str:
    return re.sub(r"\D", "", value or "")


class SlackTransport(Transport):
    """Sends direct messages through a Slack WebClient."""

    def __init__(self, client, min_phone_digits: int = MIN_PHONE_DIGITS):
        self.client = client
        self.min_phone_digits = min_phone_digits
        self._lock = threading.Lock()
        self._dm_channels: dict[str, str] = {}
        self._placeholders: dict[str, tuple[str, str]] = {}
        self._phone_index: Optional[dict[str, str]] = None

    def _dm_channel(self, user_id: str) -> str:
        with self._lock:
            channel = self._dm_channels.get(user_id)
        if channel:
            return channel
        response = self.client.conversations_open(users=user_id)
        channel = response["channel"]["id"]
        with self._lock:
            self._dm_channels[user_id] = channel
        return channel

    def send_text(self, recipient_id: str, text: str):
        try:
            channel = self._dm_channel(recipient_id)
            self.client.chat_postMessage(channel=channel, text=text)
        except SlackApiError as exc:
            raise DeliveryError(f"slack send to {recipient_id} failed: {exc.response.get('error')}") from exc
        logger.info("[SEND] to=%s text=%r", recipient_id, text[:100])

    def start_typing(self, recipient_id: str):
        try:
            channel = self._dm_channel(recipient_id)
            response = self.client.chat_postMessage(channel=channel, text=TYPING_PLACEHOLDER)
        except SlackApiError as exc:
            logger.warning("[TYPING] Could not post placeholder for %s: %s", recipient_id, exc)
            return
        with self._lock:
            self._placeholders[recipient_id] = (channel, response["ts"])

    def stop_typing(self, recipient_id: str):
        with self._lock:
            placeholder = self._placeholders.pop(recipient_id, None)
        if not placeholder:
            return
        channel, ts = placeholder
        try:
            self.client.chat_delete(channel=channel, ts=ts)
        except SlackApiError as exc:
            logger.warning("[TYPING] Could not delete placeholder for %s: %s", recipient_id, exc)

    def _load_phone_index(self) -> dict[str, str]:
        index = {}
        cursor = None
        while True:
            response = self.client.users_list(cursor=cursor, limit=200)
            for member in response.get("members", []):
                if member.get("deleted") or member.get("is_bot"):
                    continue
                phone = _digits(member.get("profile", {}).get("phone", ""))
                if phone:
                    index[phone] = member["id"]
            cursor = (response.get("response_metadata") or {}).get("next_cursor")
            if not cursor:
                break
        logger.info("[SLACK] Indexed %d workspace phone numbers", len(index))
        return index

    def resolve_recipient(self, phone: str) -> Optional[str]:
        with self._lock:
            index = self._phone_index
        if index is None:
            try:
                index = self._load_phone_index()
            except SlackApiError as exc:
                logger.error("[SLACK] users.list failed: %s", exc)
                return None
            with self._lock:
                self._phone_index = index
        digits = _digits(phone)
        if digits in index:
            return index[digits]
        if len(digits) < self.min_phone_digits:
            return None
        # Profiles often omit the country code
        for known, user_id in index.items():
            if len(known) < self.min_phone_digits:
                continue
            if digits.endswith(known) or known.endswith(digits):
                return user_id
        return None


def _sender_profile(client, user_id: str) -> tuple[str, str]:
    try:
        profile = client.users_info(user=user_id)["user"].get("profile", {})
    except SlackApiError as exc:
        logger.warning("[SLACK] users.info failed for %s: %s", user_id, exc)
        return "", ""
    name = profile.get("real_name") or profile.get("display_name") or ""
    return name, _digits(profile.get("phone", ""))


def event_to_inbound(event: dict, client) -> InboundMessage:
    """Convert a Slack DM event into an InboundMessage."""
    user_id = event["user"]
    text = unwrap_slack_markup(event.get("text", ""))
    name, phone = _sender_profile(client, user_id)

    attachment = None
    files = event.get("files") or []
    if files:
        shared = files[0]
        attachment = Attachment(
            kind="document",
            payload=shared.get("plain_text") or shared.get("preview") or "",
            file_name=shared.get("name", ""),
        )
    else:
        link = _LINK_RE.search(event.get("text", ""))
        if link and link.group(1).startswith("http"):
            attachment = Attachment(kind="link", payload=link.group(1))
    return InboundMessage(sender_id=user_id, text=text, display_name=name, attachment=attachment, phone=phone)


def _process_dm(event, client, coordinator, transport: SlackTransport):
    """Run one DM through the coordinator and report failures back to the user."""
    logger.info("[RECV] user=%s channel=%s text=%r",
                event.get("user"), event.get("channel"), (event.get("text") or "")[:100])
    message = event_to_inbound(event, client)
    if not message.text and not message.attachment:
        logger.info("[SKIP] Empty text after cleanup")
        return
    try:
        deliver_inbound(transport, coordinator, message)
    except Exception as e:
        logger.exception("[PIPELINE] Error: %s", e)
        try:
            client.chat_postMessage(channel=event["channel"], text=APOLOGY_MESSAGE)
        except SlackApiError:
            logger.exception("[PIPELINE] Could not send apology to %s", event.get("user"))


def _register_handlers(app: App, coordinator, transport: SlackTransport):
    """Register event handlers on the app."""

    @app.event("message")
    def handle_message(event, client):
        logger.info("[EVENT] message: channel_type=%s bot_id=%s subtype=%s user=%s",
                    event.get("channel_type"), event.get("bot_id"), event.get("subtype"), event.get("user"))
        if event.get("bot_id") or event.get("subtype") not in (None, "file_share"):
            return
        if event.get("channel_type") == "im":
            _process_dm(event, client, coordinator, transport)


def _provider_key() -> str:
    return GEMINI_API_KEY if LLM_PROVIDER == "gemini" else ANTHROPIC_API_KEY


def start():
    """Start the Slack bot via Socket Mode."""
    logging.basicConfig(level=logging.INFO)

    # Fail fast if required secrets are missing
    if not SLACK_BOT_TOKEN:
        raise RuntimeError("SLACK_BOT_TOKEN is not set. Check .env or Secret Manager")
    if not SLACK_APP_TOKEN:
        raise RuntimeError("SLACK_APP_TOKEN is not set. Check .env or Secret Manager")
    if not _provider_key():
        raise RuntimeError(f"API key for LLM_PROVIDER={LLM_PROVIDER} is not set. Check .env or Secret Manager")

    from reachbot.app import build_services

    global _app
    _app = App(token=SLACK_BOT_TOKEN)
    transport = SlackTransport(_app.client)
    services = build_services(transport)

    _register_handlers(_app, services.coordinator, transport)
    handler = SocketModeHandler(_app, SLACK_APP_TOKEN)
    logger.info("ReachBot starting...")
    handler.start()
