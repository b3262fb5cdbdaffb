"""Exception taxonomy for the watcher."""

from __future__ import annotations


class HousewatchError(Exception):
    """Base class for every error raised by housewatch."""


class FetchError(HousewatchError):
    """Vacancy fetch failed (network, HTTP status or malformed body)."""


class PortalUnauthorized(FetchError):
    """Portal answered 401 to an authenticated call."""


class AuthError(HousewatchError):
    """Login or OTP exchange could not complete."""


class OtpTimeoutError(AuthError):
    """Operator did not reply with an OTP before the deadline."""


class OtpSessionBusy(AuthError):
    """An OTP session is already waiting for a reply."""


class DispatchError(HousewatchError):
    """A single notification delivery failed."""


class SubscriberQueryError(HousewatchError):
    """Subscriber store query failed."""


__all__ = [
    "HousewatchError",
    "FetchError",
    "PortalUnauthorized",
    "AuthError",
    "OtpTimeoutError",
    "OtpSessionBusy",
    "DispatchError",
    "SubscriberQueryError",
]
