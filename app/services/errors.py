"""
Domain exceptions for the tarification core.

Services raise these; routers translate them into HTTP responses
(see app/api/deps.py: http_error).
"""

from enum import Enum
from typing import Optional


class TarificationError(Exception):
    """Base exception for the tarification / quote lifecycle core."""
    pass


class ValidationError(TarificationError):
    """Caller supplied malformed or missing data. Never retried."""
    pass


class PricingErrorKind(str, Enum):
    TRANSPORT = "transport"
    PROVIDER_REJECTED = "provider_rejected"
    MALFORMED_RESPONSE = "malformed_response"


class PricingError(TarificationError):
    """The Exade provider could not produce a usable answer."""

    def __init__(
        self,
        kind: PricingErrorKind,
        message: str,
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.status_code = status_code

    def __str__(self) -> str:
        if self.status_code is not None:
            return f"[{self.kind.value}] HTTP {self.status_code}: {self.message}"
        return f"[{self.kind.value}] {self.message}"


class ExadeDecodeError(TarificationError):
    """Response body has no recognizable Exade structure."""
    pass


class QuoteNotFound(TarificationError):
    pass


class IllegalTransition(TarificationError):
    """Lifecycle state machine violation."""

    def __init__(self, quote_id: str, current: str, action: str):
        super().__init__(f"Devis {quote_id}: '{action}' impossible depuis le statut '{current}'")
        self.quote_id = quote_id
        self.current = current
        self.action = action


class AlreadyLocked(TarificationError):
    """Quote already pushed to production (or a push is in flight)."""

    def __init__(self, quote_id: str, message: Optional[str] = None):
        super().__init__(message or f"Devis {quote_id} déjà verrouillé sur Exade")
        self.quote_id = quote_id
