"""Telegram Bot API update parsing."""

from pydantic import BaseModel


class InboundEvent(BaseModel):
    """The parts of one Telegram update the dispatcher needs."""

    update_id: str
    actor_external_id: str
    chat_destination: str
    text: str
    display_name: str | None = None
    username: str | None = None


def _display_name(user: dict) -> str | None:
    parts = [user.get("first_name"), user.get("last_name")]
    name = " ".join(str(p).strip() for p in parts if p and str(p).strip())
    return name or None


def parse_update(update: dict) -> InboundEvent | None:
    """Pull a text command out of `message`, `edited_message` or `callback_query`.

    Returns None for updates without an id, sender, chat or text (joins,
    stickers, channel posts and the like).
    """

    if not isinstance(update, dict) or update.get("update_id") is None:
        return None

    if "callback_query" in update:
        query = update.get("callback_query") or {}
        sender = query.get("from") or {}
        chat = (query.get("message") or {}).get("chat") or {}
        text = query.get("data")
    else:
        message = update.get("message") or update.get("edited_message") or {}
        sender = message.get("from") or {}
        chat = message.get("chat") or {}
        text = message.get("text")

    if sender.get("id") is None or chat.get("id") is None or not text:
        return None
    return InboundEvent(
        update_id=str(update["update_id"]),
        actor_external_id=str(sender["id"]),
        chat_destination=str(chat["id"]),
        text=str(text),
        display_name=_display_name(sender),
        username=sender.get("username"),
    )


def split_command(text: str) -> tuple[str, list[str]]:
    """'/AddDebt@shop_bot 0750... 5000' -> ('/adddebt', ['0750...', '5000'])."""

    tokens = (text or "").strip().split()
    if not tokens or not tokens[0].startswith("/"):
        return "", tokens
    command = tokens[0].split("@", 1)[0].lower()
    return command, tokens[1:]
