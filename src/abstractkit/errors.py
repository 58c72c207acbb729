"""
Error taxonomy for abstractkit.

Every error carries the name of the operation that failed so callers can
tell configuration mistakes (capability mismatch, bad ABI) apart from
transient network failures. ``exit_code`` is used by the CLI.
"""

from __future__ import annotations

from typing import Any, Optional, Sequence


class AbstractKitError(RuntimeError):
    exit_code: int = 1

    def __init__(self, message: str, *, operation: Optional[str] = None) -> None:
        self.operation = operation
        if operation:
            message = f"{operation}: {message}"
        super().__init__(message)


class TransportError(AbstractKitError):
    """Connection refused, timeout, or malformed response."""

    exit_code = 3


class RpcError(TransportError):
    """The node answered with a JSON-RPC error object."""

    def __init__(
        self,
        message: str,
        *,
        code: Optional[int] = None,
        data: Any = None,
        operation: Optional[str] = None,
    ) -> None:
        self.code = code
        self.data = data
        super().__init__(f"RPC error {code}: {message}", operation=operation)


class CapabilityError(AbstractKitError):
    """Operation invoked on a connection that cannot serve it."""

    exit_code = 2

    def __init__(self, operation: str, required: Any) -> None:
        self.required = required
        name = getattr(required, "value", required)
        super().__init__(f"requires a {name} connection", operation=operation)


class EstimationError(AbstractKitError):
    exit_code = 4


class SignatureError(AbstractKitError):
    exit_code = 5


class DecodeError(AbstractKitError):
    exit_code = 6


class SubscriptionError(AbstractKitError):
    exit_code = 7


class CompoundTransactionError(AbstractKitError):
    """A multi-transaction operation failed part way through.

    ``completed`` holds the transactions that were submitted before the
    failure; the failure itself is chained as ``__cause__``.
    """

    exit_code = 8

    def __init__(
        self,
        message: str,
        completed: Sequence[Any],
        *,
        operation: Optional[str] = None,
    ) -> None:
        self.completed = list(completed)
        super().__init__(message, operation=operation)
