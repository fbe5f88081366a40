# propauth/errors.py
from __future__ import annotations


class PropauthError(Exception):
    """Base class for errors raised by the authorization core."""


class NotFoundError(PropauthError, LookupError):
    """A referenced organization, team, property or member does not exist."""


class ValidationError(PropauthError, ValueError):
    """Malformed input to a grant/assign flow. Raised before anything is written."""


class SubscriptionLimitError(PropauthError):
    """The organization's plan does not allow another user or property."""


class SubscriptionInactiveError(SubscriptionLimitError):
    """Neither a running trial nor an active subscription."""


class AuthorizationDenied(PropauthError):
    """
    Raised by calling layers when a permission check returns False.

    The resolver itself never raises this; denial is a normal return value.
    The message is always generic so callers do not leak which rule failed.
    """

    def __init__(self, message: str = "Insufficient permissions") -> None:
        super().__init__(message)
