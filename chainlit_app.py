"""Chainlit console for the QBox live feed.

A chat UI where you type slash commands to ask, upvote and triage questions in
one room. Runs the feed session in-process; live events from the backend show
up as chat messages.

    QBOX_ROOM_ID=... QBOX_ROOM_CODE=ABC123 QBOX_ROLE=instructor chainlit run chainlit_app.py
"""

import logging
import os

import chainlit as cl
from dotenv import load_dotenv

from qbox.console.commands import Command, parse_command
from qbox.engine.visibility import FeedFilter, available_filters
from qbox.errors import ActionFailure, LoadFailure
from qbox.models.events import FeedEvent
from qbox.models.questions import Question
from qbox.models.room import ViewerRole
from qbox.session import FeedSession

load_dotenv()

logging.basicConfig(
    level=logging.DEBUG if os.getenv("DEBUG", "false").lower() == "true" else logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

ROOM_ID = os.getenv("QBOX_ROOM_ID", "")
ROOM_CODE = os.getenv("QBOX_ROOM_CODE", "")
ROLE = ViewerRole(os.getenv("QBOX_ROLE", ViewerRole.PARTICIPANT.value))

CONFIRM_PROMPTS = {
    "delete": "Delete this question? It will be moved to the Deleted section.",
    "purge": "⚠️ Permanently delete this question? This cannot be undone!",
    "close": "⚠️ Close this room? Students will no longer be able to ask questions. This cannot be undone!",
    "regen": "⚠️ If you regenerate your tag you lose the link to your previous questions. They will appear as another student's. This cannot be undone.",
    "logout": "Are you sure you want to logout?",
}


def _format_question(q: Question) -> str:
    who = "**You**" if q.is_mine else f"`{q.author_tag}`"
    flag = " 🚩" if q.is_reported else ""
    line = f"- `{q.id}` {who}: {q.text} — 👍 {q.upvotes} · *{q.status.value}*{flag}"
    if q.answer_text:
        line += f"\n  > {q.answer_text}"
    return line


async def _show_feed(session: FeedSession, feed_filter: FeedFilter):
    questions = session.view(feed_filter)
    counts = " | ".join(f"{name}: {count}" for name, count in session.counts().items())
    body = "\n".join(_format_question(q) for q in questions) or "_No questions yet._"
    await cl.Message(content=f"**{feed_filter.value.title()}** ({counts})\n\n{body}", author="QBox").send()


async def _confirm(command: Command) -> bool:
    res = await cl.AskActionMessage(
        content=CONFIRM_PROMPTS[command.type],
        actions=[
            cl.Action(name="confirm", payload={"value": "yes"}, label="Yes"),
            cl.Action(name="cancel", payload={"value": "no"}, label="Cancel"),
        ],
    ).send()
    return bool(res) and res.get("payload", {}).get("value") == "yes"


async def _announce(event: FeedEvent, outcome: str):
    if outcome != "applied" or event.source != "remote":
        return
    question_id = event.payload.get("id", "")
    await cl.Message(content=f"🔔 `{event.kind}` {question_id}", author="QBox").send()


async def _run_command(session: FeedSession, command: Command) -> str:
    """Execute a parsed command and return the text to show."""
    dispatcher = session.dispatcher
    payload = command.payload
    confirmed = await _confirm(command) if command.needs_confirmation else False

    if command.type == "ask":
        result = await dispatcher.ask(payload["text"], session.room_id)
        return f"✅ Question submitted ({result['question_id'] or 'pending delivery'})."
    if command.type == "upvote":
        result = await dispatcher.upvote(payload["question_id"])
        return f"👍 {result['upvotes']} upvotes."
    if command.type == "report":
        await dispatcher.report(payload["question_id"], payload["reason"])
        return f"✅ Reported as {payload['reason'].lower()}."
    if command.type == "answer":
        await dispatcher.answer(payload["question_id"], payload.get("answer_text"))
        return "✅ Question marked as answered."
    if command.type == "delete":
        result = await dispatcher.delete(payload["question_id"], confirmed=confirmed)
    elif command.type == "restore":
        result = await dispatcher.restore(payload["question_id"])
    elif command.type == "purge":
        result = await dispatcher.purge(payload["question_id"], confirmed=confirmed)
    elif command.type == "close":
        result = await dispatcher.close_room(session.room_id, confirmed=confirmed)
    elif command.type == "regen":
        result = await dispatcher.regenerate_tag(confirmed=confirmed)
    elif command.type == "logout":
        result = await session.logout(confirmed=confirmed)
    elif command.type == "visibility":
        result = await dispatcher.toggle_visibility(session.room_id)
        return f"✅ Questions are now {result['visibility']}."
    elif command.type == "refresh":
        await session.refresh()
        return "🔄 Feed reloaded."
    elif command.type == "tag":
        return f"Your anonymous tag: `{session.identity.current_tag}`"
    elif command.type == "status":
        room = session.engine.room
        return (
            f"**Room:** `{session.room_code}` ({room.visibility.value if room else '?'}, "
            f"{room.status.value if room else '?'}) | **Connected:** {session.channel.is_connected}\n"
            f"**Merges:** {session.engine.stats}"
        )
    else:
        return f"Unhandled command: {command.type}"

    if result["status"] == "cancelled":
        return "Cancelled."
    return f"✅ {command.type} done."


@cl.on_chat_start
async def on_chat_start():
    """Called when the Chainlit chat session starts."""
    if not ROOM_ID or not ROOM_CODE:
        await cl.Message(content="❌ Set QBOX_ROOM_ID and QBOX_ROOM_CODE first.", author="System").send()
        return

    session = FeedSession(room_id=ROOM_ID, room_code=ROOM_CODE, role=ROLE)
    session.add_listener(_announce)
    cl.user_session.set("session", session)
    cl.user_session.set("filter", FeedFilter.PENDING if ROLE == ViewerRole.INSTRUCTOR else FeedFilter.ALL)

    await cl.Message(
        content=f"# QBox — room `{ROOM_CODE}`\n\n"
                "**Quick Reference:**\n"
                "- *(type a question)* or `/ask ...` — ask anonymously\n"
                "- `/upvote ID` / `/report ID Spam` — react to a question\n"
                "- `/answer ID [text]` / `/delete ID` / `/restore ID` / `/purge ID` — triage\n"
                "- `/filter all|mine|pending|answered|rejected` — switch tab\n"
                "- `/visibility` / `/close` — room controls\n"
                "- `/refresh` / `/status` / `/tag` / `/regen` / `/logout`\n",
        author="System",
    ).send()

    try:
        await session.start()
    except LoadFailure as e:
        await cl.Message(content=f"❌ {e} Type `/refresh` to retry.", author="System").send()
        return
    await _show_feed(session, cl.user_session.get("filter"))


@cl.on_message
async def on_message(message: cl.Message):
    """Called when the user sends a slash command or a free-text question."""
    text = message.content.strip()
    if not text:
        return
    session: FeedSession = cl.user_session.get("session")
    if session is None:
        await cl.Message(content="❌ No active session. Reload the page to join the room again.", author="System").send()
        return

    command = parse_command(text)
    if command.type in ("unknown", "error"):
        await cl.Message(content=f"❌ {command.payload['error']}", author="System").send()
        return

    if command.type == "filter":
        if command.payload["filter"] not in available_filters(session.role):
            await cl.Message(content=f"❌ Filter '{command.payload['filter'].value}' is not available here.", author="System").send()
            return
        cl.user_session.set("filter", command.payload["filter"])

    try:
        reply = None if command.type == "filter" else await _run_command(session, command)
    except (ActionFailure, LoadFailure) as e:
        await cl.Message(content=f"❌ {e}", author="System").send()
        return

    if reply:
        await cl.Message(content=reply, author="QBox").send()

    if not session.is_active and command.type == "logout":
        cl.user_session.set("session", None)
        await cl.Message(content="👋 Logged out. Reload the page to join again.", author="System").send()
        return
    await _show_feed(session, cl.user_session.get("filter"))


@cl.on_chat_end
async def on_chat_end():
    """Called when the chat session ends."""
    session: FeedSession = cl.user_session.get("session")
    if session is not None:
        await session.close()
        logger.info("Feed session closed.")
