"""Slash command parser for the feed console."""

import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from qbox.engine.visibility import FeedFilter
from qbox.services.dispatcher import REPORT_REASONS


@dataclass
class Command:
    """A parsed slash command or free-text input."""
    type: str
    payload: dict = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(tz=None))
    raw_text: str = ""

    @property
    def needs_confirmation(self) -> bool:
        return self.type in CONFIRM_COMMANDS


# Commands whose effect is irreversible or disruptive
CONFIRM_COMMANDS = {"delete", "purge", "close", "regen", "logout"}

# Commands that act on one question by id
QUESTION_COMMANDS = {"upvote", "answer", "delete", "restore", "purge", "report"}

# All recognized slash commands
VALID_COMMANDS = QUESTION_COMMANDS | {
    "ask", "filter", "refresh", "visibility", "close", "regen", "logout", "status", "tag",
}


def _error(message: str, text: str) -> Command:
    return Command(type="error", payload={"error": message}, raw_text=text)


def parse_command(text: str) -> Command:
    """Parse a slash command or free-text input into a Command object.

    Supported formats:
        /ask How does garbage collection work?
        /upvote <id>
        /report <id> Spam|Inappropriate|Off-topic
        /answer <id> [answer text]
        /delete <id>
        /restore <id>
        /purge <id>
        /filter all|mine|pending|answered|rejected
        /refresh
        /visibility
        /close
        /regen
        /logout
        /status
        /tag
        (free text) — treated as a new question
    """
    text = text.strip()

    if not text.startswith("/"):
        return Command(type="ask", payload={"text": text}, raw_text=text)

    match = re.match(r"^/(\w+)\s*(.*)", text, re.DOTALL)
    if not match:
        return Command(type="unknown", payload={"error": f"Could not parse: {text}"}, raw_text=text)

    cmd_name = match.group(1).lower()
    args = match.group(2).strip()

    if cmd_name not in VALID_COMMANDS:
        return Command(type="unknown", payload={"error": f"Unknown command: /{cmd_name}"}, raw_text=text)

    payload: dict = {}

    if cmd_name == "ask":
        if not args:
            return _error("Format: /ask Your question here", text)
        payload["text"] = args

    elif cmd_name in QUESTION_COMMANDS:
        parts = args.split(maxsplit=1)
        if not parts:
            return _error(f"/{cmd_name} requires a question ID", text)
        payload["question_id"] = parts[0]
        rest: Optional[str] = parts[1].strip() if len(parts) > 1 else None

        if cmd_name == "report":
            reason = next((r for r in REPORT_REASONS if rest and r.lower() == rest.lower()), None)
            if reason is None:
                return _error(f"Format: /report <id> {'|'.join(REPORT_REASONS)}", text)
            payload["reason"] = reason
        elif cmd_name == "answer":
            payload["answer_text"] = rest

    elif cmd_name == "filter":
        try:
            payload["filter"] = FeedFilter((args or "all").lower())
        except ValueError:
            return _error(f"/filter requires one of: {', '.join(f.value for f in FeedFilter)}; got '{args}'", text)

    return Command(type=cmd_name, payload=payload, raw_text=text)
