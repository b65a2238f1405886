"""
Error types for the ladder hub.

Routes turn any LadderError into a JSON {"success": False, "message": ...}
response using the error's status_code.
"""


class LadderError(Exception):
    status_code = 400

    def __init__(self, message=None):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__


class InvalidScore(LadderError):
    """Score input that is not a whole, non-negative number"""
    status_code = 400


class Forbidden(LadderError):
    """Acting player is neither a participant nor an admin"""
    status_code = 403


class EditWindowClosed(Forbidden):
    """Completed match can no longer be corrected"""


class NotFound(LadderError):
    status_code = 404


class InvalidTransition(LadderError):
    """Match status does not allow the requested action"""
    status_code = 409


class MembershipConflict(LadderError):
    """Player (or partner) already holds a slot in the ladder"""
    status_code = 409


class DuplicatePlayer(LadderError):
    """Email address already belongs to a registered player"""
    status_code = 409


class InconsistentMembership(LadderError):
    """
    No usable membership data for a ladder, not even from the fallback sources.

    Normally only logged: rankings degrade to "no players". Raised when a
    caller asks for strict resolution.
    """
    status_code = 409

    def __init__(self, ladder_id=None):
        super().__init__(f"No membership data available for ladder {ladder_id}")
        self.ladder_id = ladder_id


class PartialNotificationFailure(Warning):
    """
    The primary change (schedule, batch run) was committed but one or more
    emails failed. Returned to the caller, never raised.
    """

    def __init__(self, report):
        super().__init__(
            f"{report.failed} of {report.sent + report.failed} notification emails failed"
        )
        self.report = report

    @property
    def message(self):
        return str(self)
