"""Outgoing chat texts (Telegram HTML parse mode). User data is always escaped."""

from html import escape

from ledgerbot.common.notices import bold, code
from ledgerbot.services.identity.models import ROLE_ADMIN, ROLE_STAFF


CUSTOMER_HELP = (
    f"{bold('Help')}\n\n"
    f"{code('/link 0750xxxxxxx Your Name')} link your phone (needs admin approval)\n"
    f"{code('/me')} show your balance (IQD and USD)\n"
    f"{code('/help')} this message"
)

STAFF_HELP = (
    f"{bold('Help - staff')}\n\n"
    f"{bold('Customers')}\n"
    f"{code('/addcustomer <phone> <name?>')} register a customer\n"
    f"{code('/customer <phone>')} show balances\n"
    f"{code('/report <phone>')} latest transactions\n\n"
    f"{bold('Debt / payment')}\n"
    f"{code('/adddebt <phone> <amount> <IQD|USD> <note?>')} add debt\n"
    f"{code('/pay <phone> <amount> <IQD|USD> <note?>')} record payment\n\n"
    f"{code('/help')} this message"
)

ADMIN_HELP = (
    STAFF_HELP
    + "\n\n"
    + f"{bold('Admin')}\n"
    f"{code('/addstaff <user_id>')} / {code('/removestaff <user_id>')}\n"
    f"{code('/lock <user_id>')} / {code('/unlock <user_id>')}\n"
    f"{code('/deletecustomer <phone>')} delete customer and history\n"
    f"{code('/pending')} open link requests\n"
    f"{code('/approve <id>')} / {code('/reject <id>')}"
)

INVALID_PHONE = f"Invalid phone number.\nExample: {code('/link 0750xxxxxxx Your Name')}"
NO_PERMISSION = "You do not have permission for this."
ACCOUNT_LOCKED = "Your account is locked. Contact the shop."
NOT_LINKED = f"You are not linked to a phone yet.\nExample: {code('/link 0750xxxxxxx Your Name')}"
UNKNOWN_COMMAND = f"Unknown command.\n{code('/help')} for help"
TRY_AGAIN = "Something went wrong. Please try again later."


def help_text(role: str) -> str:
    if role == ROLE_ADMIN:
        return ADMIN_HELP
    if role == ROLE_STAFF:
        return STAFF_HELP
    return CUSTOMER_HELP


def start_text(role: str) -> str:
    return f"Hello!\n\nThis bot keeps track of your {bold('debt')} with the shop.\n\n{help_text(role)}"


def usage(example: str) -> str:
    return f"Invalid input.\nExample: {code(example)}"


def invalid(reason: str, example: str | None = None) -> str:
    text = f"Invalid input: {escape(str(reason), quote=False)}"
    return f"{text}\nExample: {code(example)}" if example else text


def summary(phone: str, balances: dict[str, int], full_name: str | None = None) -> str:
    name_line = f"Name: {code(full_name)}\n" if full_name else ""
    lines = "\n".join(f"{currency}: {code(amount)}" for currency, amount in balances.items())
    return f"{bold('Debt status')}\nPhone: {code(phone)}\n{name_line}{lines}"


def entry_recorded(kind: str, currency: str, balance: int) -> str:
    label = "Debt" if kind == "debt" else "Payment"
    return f"{label} recorded.\nNew balance ({currency}): {code(balance)}"


def history(phone: str, entries) -> str:
    if not entries:
        return f"{bold('Report')}\nNo transactions."
    lines = []
    for entry in entries:
        label = "payment" if entry.kind == "payment" else "debt"
        note = f" | {code(entry.note)}" if entry.note else ""
        lines.append(f"- {label}: {code(entry.amount)} {entry.currency}{note}")
    return f"{bold('Latest transactions')}\nPhone: {code(phone)}\n\n" + "\n".join(lines)


def customer_registered(phone: str, full_name: str | None) -> str:
    name_line = f"\nName: {code(full_name)}" if full_name else ""
    return f"Customer registered.\nPhone: {code(phone)}{name_line}"


def customer_deleted(phone: str) -> str:
    return f"Customer and their transactions deleted.\nPhone: {code(phone)}"


def phone_not_found(phone: str) -> str:
    return f"Phone not found: {code(phone)}"


def link_submitted(request_id: int, created: bool) -> str:
    if not created:
        return f"Your request {code(request_id)} is already waiting for approval."
    return f"Request {code(request_id)} sent. You will be notified once an admin decides."


def decision_done(request_id: int, status: str) -> str:
    return f"Request {code(request_id)} {status.lower()}."


def already_resolved(request_id: int, status: str) -> str:
    return f"Request {code(request_id)} was already {status.lower()}."


def request_not_found(request_id) -> str:
    return f"Request not found: {code(request_id)}"


def pending_requests(requests) -> str:
    if not requests:
        return "No pending requests."
    lines = [f"#{r.id} {code(r.phone)} {escape(r.display_name, quote=False)}" for r in requests]
    return f"{bold('Pending requests')}\n" + "\n".join(lines)


def role_changed(target: str, role: str) -> str:
    return f"User {code(target)} is now {bold(role)}."


def status_changed(target: str, status: str) -> str:
    return f"User {code(target)} is now {bold(status)}."


def identity_not_found(target: str) -> str:
    return f"Unknown user: {code(target)}"
