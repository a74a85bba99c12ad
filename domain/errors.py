from __future__ import annotations


class SessionError(Exception):
    """Base class for failures surfaced by the session and its stores."""


class MisconfiguredError(SessionError):
    """Backend credentials are absent or placeholders for a real-mode operation."""


class ConflictError(SessionError):
    """An identity already exists for the given email."""


class UnauthenticatedError(SessionError):
    """Credentials did not match a known identity."""


class NotFoundError(SessionError):
    """No profile exists for a resolved identity."""


class InvalidBalanceError(SessionError):
    """A balance write was negative or not a whole number."""


class UnavailableError(SessionError):
    """The backend could not be reached or failed transiently."""
