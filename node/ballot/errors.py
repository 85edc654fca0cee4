"""
Rejections raised by the workflow engine.

Every error is raised before any state is touched, so a rejected call
never has a partial effect. Each class carries the HTTP status the node
answers with.
"""


class BallotError(Exception):
    """Base class: a call was rejected with a human-readable reason."""

    status_code = 400

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class Unauthorized(BallotError):
    """Caller lacks the role the operation requires."""

    status_code = 403


class InvalidPhase(BallotError):
    """Operation invoked while the workflow is in another status."""

    status_code = 409

    def __init__(self, operation: str, required, current):
        self.operation = operation
        self.required = required
        self.current = current
        super().__init__(
            f"{operation} requires status '{required.value}', "
            f"current status is '{current.value}'"
        )


class AlreadyRegistered(BallotError):
    status_code = 409


class AlreadyVoted(BallotError):
    status_code = 409


class InvalidInput(BallotError):
    status_code = 400


class NotYetAvailable(BallotError):
    """A query was made before its result exists."""

    status_code = 404
