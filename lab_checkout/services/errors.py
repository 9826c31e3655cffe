from __future__ import annotations


class CheckoutError(RuntimeError):
    pass


class InvalidInput(CheckoutError):
    """Caller-supplied date or kind mismatch; re-prompt and try again."""


class PermissionDenied(CheckoutError):
    """The acting member lacks rights for the requested action."""


class ConflictError(CheckoutError):
    """The snapshot no longer allows the action; re-fetch before retrying."""


class RemoteError(CheckoutError):
    """Opaque failure from the equipment store."""
