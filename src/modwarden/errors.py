"""
Error taxonomy for the infraction engine.

- ValidationError: bad input, rejected before anything is written.
- NotFoundError: a referenced infraction or appeal does not exist.
- ConflictError: the request clashes with stored state (duplicate id,
  appeal already pending or already resolved).
- ExternalActionFailure: the platform refused or could not apply a
  punishment. Raised by the actuator; callers that record infractions fail
  closed on it.
"""

from __future__ import annotations


class ModerationError(Exception):
    """Base class for every error raised by the engine."""


# -- validation ---------------------------------------------------------------

class ValidationError(ModerationError):
    """Input was rejected before any state changed."""


class AppealsDisabled(ValidationError):
    """The community's policy does not accept appeals."""

    def __init__(self, community_id) -> None:
        super().__init__(f"Appeals are not allowed in community {community_id}.")
        self.community_id = community_id


class InfractionNotAppealable(ValidationError):
    """The infraction's kind or flags exclude it from the appeal flow."""

    def __init__(self, case_id: str) -> None:
        super().__init__(f"Infraction {case_id} cannot be appealed.")
        self.case_id = case_id


# -- not found ----------------------------------------------------------------

class NotFoundError(ModerationError):
    """A referenced record does not exist."""


class InfractionNotFound(NotFoundError):
    def __init__(self, case_id: str) -> None:
        super().__init__(f"No matching infraction {case_id}.")
        self.case_id = case_id


class AppealNotFound(NotFoundError):
    def __init__(self, appeal_id: str) -> None:
        super().__init__(f"No appeal {appeal_id}.")
        self.appeal_id = appeal_id


# -- conflicts ----------------------------------------------------------------

class ConflictError(ModerationError):
    """The request conflicts with stored state; nothing was changed."""


class DuplicateId(ConflictError):
    def __init__(self, record_id: str) -> None:
        super().__init__(f"A record with id {record_id} already exists.")
        self.record_id = record_id


class AppealAlreadyPending(ConflictError):
    def __init__(self, subject_id, appeal_id: str | None = None) -> None:
        super().__init__(f"User {subject_id} already has a pending appeal.")
        self.subject_id = subject_id
        self.appeal_id = appeal_id


class AlreadyResolved(ConflictError):
    def __init__(self, appeal_id: str, status) -> None:
        super().__init__(f"Appeal {appeal_id} was already resolved ({status}).")
        self.appeal_id = appeal_id
        self.status = status


class AppealOnCooldown(ConflictError):
    def __init__(self, case_id: str, retry_at) -> None:
        super().__init__(f"Infraction {case_id} cannot be appealed again until {retry_at:%Y-%m-%d %H:%M} UTC.")
        self.case_id = case_id
        self.retry_at = retry_at


# -- external -----------------------------------------------------------------

class ExternalActionFailure(ModerationError):
    """The platform could not apply or revoke a punishment."""

    def __init__(self, action: str, detail: str = "") -> None:
        message = f"{action} failed"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.action = action
        self.detail = detail


class PermissionDenied(ExternalActionFailure):
    """The bot lacks the permission or role hierarchy for the action."""


class TargetNotFound(ExternalActionFailure):
    """The member, ban entry, role or community could not be found."""
