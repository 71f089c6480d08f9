"""Domain error taxonomy.

Services raise these; the inbound dispatcher turns them into replies. A
redelivered update is not an error: the intake guard just returns False.
"""


class LedgerBotError(Exception):
    """Base class for expected, user-reportable failures."""


class ValidationError(LedgerBotError):
    """Bad amount, currency, phone or empty name. No state was changed."""


class AuthorizationError(LedgerBotError):
    """Role or status does not grant the capability."""

    def __init__(self, capability: str, actor: str | None = None) -> None:
        super().__init__(f"missing capability {capability}")
        self.capability = capability
        self.actor = actor


class NotFound(LedgerBotError):
    """Referenced customer, identity or request does not exist."""


class AlreadyResolved(LedgerBotError):
    """Approval request was already decided."""

    def __init__(self, request_id: int, status: str) -> None:
        super().__init__(f"request {request_id} already {status.lower()}")
        self.request_id = request_id
        self.status = status


class TransportError(Exception):
    """Outbound send failed or timed out; only the outbox ever sees this."""

    def __init__(self, message: str, kind: str = "transport") -> None:
        super().__init__(message)
        self.kind = kind
