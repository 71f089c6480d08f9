"""Notification texts queued by the core services (Telegram HTML parse mode)."""

from html import escape


def bold(text) -> str:
    return f"<b>{escape(str(text), quote=False)}</b>"


def code(text) -> str:
    return f"<code>{escape(str(text), quote=False)}</code>"


def entry_notice(kind: str, amount: int, currency: str, note: str | None) -> str:
    what = "Debt added" if kind == "debt" else "Payment received"
    note_line = f"\nNote: {code(note)}" if note else ""
    return f"{bold('Notice')}\n{what}: {code(amount)} {currency}{note_line}"


def link_request_for_admin(request_id: int, phone: str, display_name: str, requester: str) -> str:
    return (
        f"{bold('New link request')} #{request_id}\n"
        f"Phone: {code(phone)}\nName: {code(display_name)}\nUser: {code(requester)}\n\n"
        f"{code(f'/approve {request_id}')}  {code(f'/reject {request_id}')}"
    )


def link_approved(phone: str) -> str:
    return f"Your phone {code(phone)} is now linked. Use {code('/me')} to see your balance."


def link_rejected(phone: str) -> str:
    return f"Your link request for {code(phone)} was rejected."
