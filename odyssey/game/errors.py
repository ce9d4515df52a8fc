"""Typed mission errors.

Guard violations are raised from inside the pure mutation before any field
changes, so the transaction aborts and the stored record stays untouched.
The HTTP layer turns each error into its ``status_code``.
"""


class MissionError(Exception):
    status_code = 400
    kind = "MissionError"

    def __init__(self, message: str = ""):
        super().__init__(message or self.kind)
        self.message = message or self.kind


class PhaseMismatch(MissionError):
    status_code = 409
    kind = "PhaseMismatch"

    def __init__(self, expected: str, actual: str, message: str = ""):
        super().__init__(message or f"Phase mismatch. Expected={expected}, actual={actual}")
        self.expected = expected
        self.actual = actual


class InvalidOption(MissionError):
    kind = "InvalidOption"


class InvalidDesign(MissionError):
    kind = "InvalidDesign"


class NoOpenVote(MissionError):
    status_code = 409
    kind = "NoOpenVote"


class VoteAlreadyOpen(MissionError):
    status_code = 409
    kind = "VoteAlreadyOpen"


class StaleWrite(MissionError):
    status_code = 409
    kind = "StaleWrite"


class NotPermitted(MissionError):
    status_code = 403
    kind = "NotPermitted"


class CollaboratorUnavailable(MissionError):
    status_code = 503
    kind = "CollaboratorUnavailable"
