"""
Unified message log.

Merges chat turns from the agent's session transcripts (one JSON record per
line in ``<sessions_dir>/<session_id>.jsonl``) with messages posted directly
to the dashboard. Ingestion is idempotent: turns are deduplicated by id, so
re-running it over unchanged transcripts changes nothing but lastUpdated.
"""
import json
import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, Optional

from .events import EventBus
from .schema import ChatMessageEvent, EventType, InvalidRequest, Message, make_id, parse_timestamp, utc_now
from .store import MESSAGES, BlobStore

logger = logging.getLogger(__name__)

MESSAGE_LIMIT = 500
MAX_TEXT = 1000
MIN_TEXT = 3

# Turns containing any of these are agent housekeeping, not conversation
SKIP_MARKERS = ("HEARTBEAT_OK", "[cron:")
TELEGRAM_MARKERS = ("[Telegram", "telegram")

# Provenance markers stripped from ingested text (first occurrence each)
_CLEANUP_PATTERNS = [
    re.compile(r"\[Telegram.*?\]\s*"),
    re.compile(r"\[message_id:\s*\d+\]\s*"),
    re.compile(r"\[Queued messages.*?\]\s*", re.DOTALL),
    re.compile(r"System:\s*\[.*?\]\s*Cron:.*?(?=\n|$)"),
]

_EPOCH = datetime.fromtimestamp(0, tz=timezone.utc)


def empty_messages() -> Dict[str, Any]:
    return {"messages": [], "channels": [], "lastUpdated": utc_now()}


def extract_text(content: Any) -> str:
    """Plain text of a transcript message: a string, or its text fragments joined."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return "\n".join(
            str(part.get("text", ""))
            for part in content
            if isinstance(part, dict) and part.get("type") == "text"
        )
    return ""


def clean_text(text: str) -> str:
    for pattern in _CLEANUP_PATTERNS:
        text = pattern.sub("", text, count=1)
    return text.strip()


def _sort_key(message: Dict[str, Any]) -> datetime:
    return parse_timestamp(message.get("timestamp")) or _EPOCH


def parse_transcript_entry(entry: Any, session_id: str) -> Optional[Message]:
    """
    Turn one transcript record into a Message, or None if it is not a
    user/assistant chat turn worth keeping.
    """
    if not isinstance(entry, dict) or entry.get("type") != "message":
        return None
    msg = entry.get("message")
    if not isinstance(msg, dict) or msg.get("role") not in ("user", "assistant"):
        return None

    text = extract_text(msg.get("content"))
    if any(marker in text for marker in SKIP_MARKERS):
        return None

    if any(marker in text for marker in TELEGRAM_MARKERS):
        channel, channel_name = "telegram", "Telegram"
    else:
        channel, channel_name = "flowchat", "FlowChat"

    text = clean_text(text)
    if len(text) < MIN_TEXT:
        return None

    entry_id = entry.get("id")
    if not entry_id or isinstance(entry_id, bool) or not isinstance(entry_id, (str, int)):
        entry_id = f"msg_{entry.get('timestamp')}"

    is_user = msg["role"] == "user"
    return Message(
        id=entry_id,
        channel=channel,
        channel_name=channel_name,
        sender="Pete" if is_user else "Kai",
        sender_type="human" if is_user else "ai",
        text=text[:MAX_TEXT],
        timestamp=entry.get("timestamp") or utc_now(),
        session_id=session_id,
    )


def iter_transcript(path: Path) -> Iterator[Message]:
    """Messages from one transcript file. Malformed lines are skipped."""
    session_id = path.stem
    with open(path, "r", encoding="utf-8", errors="replace") as f:
        for line in f:
            if not line.strip():
                continue
            try:
                entry = json.loads(line)
            except ValueError:
                continue
            message = parse_transcript_entry(entry, session_id)
            if message is not None:
                yield message


class MessageLog:
    """The persisted unified message log."""

    def __init__(self, store: BlobStore, bus: EventBus, sessions_dir: str,
                 limit: int = MESSAGE_LIMIT):
        self.store = store
        self.bus = bus
        self.sessions_dir = Path(sessions_dir)
        self.limit = limit

    def load(self) -> Dict[str, Any]:
        data = self.store.get(MESSAGES, empty_messages())
        if not isinstance(data, dict) or not isinstance(data.get("messages"), list):
            logger.warning("Message log is malformed, starting from empty")
            data = empty_messages()
        return data

    def sync_from_sessions(self) -> int:
        """
        Re-scan every session transcript and merge unseen turns.

        Returns the number of messages added. Failures are logged; the
        stored log is left as it was.
        """
        try:
            with self.store.lock(MESSAGES):
                data = self.load()
                messages = data["messages"]
                seen = {m.get("id") for m in messages
                        if isinstance(m, dict) and isinstance(m.get("id"), (str, int))}
                added = 0

                if self.sessions_dir.is_dir():
                    for path in sorted(self.sessions_dir.glob("*.jsonl")):
                        try:
                            for message in iter_transcript(path):
                                if message.id in seen:
                                    continue
                                messages.append(message.to_dict())
                                seen.add(message.id)
                                added += 1
                        except Exception as e:
                            logger.warning(f"Skipping transcript {path.name}: {e}")

                messages = [m for m in messages if isinstance(m, dict)]
                messages.sort(key=_sort_key)
                data["messages"] = messages[-self.limit:]
                data["lastUpdated"] = utc_now()
                self.store.put(MESSAGES, data)
        except Exception as e:
            logger.error(f"Error syncing messages: {e}")
            return 0
        if added:
            logger.info(f"Ingested {added} new session messages")
        return added

    def append(self, body: Any) -> Dict[str, Any]:
        """Store one posted message and publish chat:message."""
        if not isinstance(body, dict):
            raise InvalidRequest("Message must be a JSON object")
        message = dict(body)
        message["id"] = make_id("msg")
        message["timestamp"] = utc_now()

        with self.store.lock(MESSAGES):
            data = self.load()
            data["messages"].append(message)
            data["messages"] = data["messages"][-self.limit:]
            data["lastUpdated"] = utc_now()
            self.store.put(MESSAGES, data)

        self.bus.publish(EventType.CHAT_MESSAGE, ChatMessageEvent.from_dict(message))
        return message
