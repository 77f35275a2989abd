"""
Error taxonomy for group progress operations.

Every failure that reaches a caller is one of these kinds. The blueprint maps
them to JSON bodies and status codes; storage errors are wrapped before they
get this far.
"""

from __future__ import annotations


class ProgressError(Exception):
    """Base class. ``kind`` is the stable machine-readable name."""

    kind = "Error"
    status_code = 500
    default_message = "Something went wrong. Please try again."

    def __init__(self, message: str = "", **detail) -> None:
        self.message = message or self.default_message
        self.detail = detail
        super().__init__(self.message)

    def to_dict(self) -> dict:
        body = {"success": False, "error": self.kind, "message": self.message}
        if self.detail:
            body["detail"] = self.detail
        return body


class NotMember(ProgressError):
    kind = "NotMember"
    status_code = 403
    default_message = "Access denied. You must be a member of this group."


class SelfReference(ProgressError):
    kind = "SelfReference"
    status_code = 400
    default_message = "You cannot partner with yourself."


class DuplicatePartnership(ProgressError):
    kind = "DuplicatePartnership"
    status_code = 409
    default_message = "Partnership request already exists or is active."


class PartnershipNotFound(ProgressError):
    kind = "PartnershipNotFound"
    status_code = 404
    default_message = "No pending partnership request found."


class InvalidStatus(ProgressError):
    kind = "InvalidStatus"
    status_code = 400
    default_message = 'Invalid status. Must be "accepted" or "declined".'


class InvalidPeriod(ProgressError):
    kind = "InvalidPeriod"
    status_code = 400
    default_message = "Period must be one of daily, weekly, monthly, all-time."


class InvalidSetting(ProgressError):
    kind = "InvalidSetting"
    status_code = 400
    default_message = "Unknown sharing category or visibility level."


class NotFound(ProgressError):
    kind = "NotFound"
    status_code = 404
    default_message = "Group not found."


class UpstreamUnavailable(ProgressError):
    """Study session data could not be read. Safe to retry later."""
    kind = "UpstreamUnavailable"
    status_code = 503
    default_message = "Study statistics are temporarily unavailable."


class PartialPartnershipFailure(ProgressError):
    """Only one side of an accepted partnership could be written.

    ``compensated`` tells whether the requester's entry was rolled back to
    pending, leaving the pair consistent.
    """
    kind = "PartialPartnershipFailure"
    status_code = 500
    default_message = "Partnership could not be recorded for both members."

    def __init__(self, message: str = "", compensated: bool = True) -> None:
        super().__init__(message, compensated=compensated)
        self.compensated = compensated
