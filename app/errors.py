"""
Error taxonomy for the appointment lifecycle workflow.

Every workflow failure derives from WorkflowError so the public operations
can convert it into a single notification for the caller.
"""


class WorkflowError(Exception):
    """Base class for failures surfaced by the appointment workflow."""

    title = "Error"
    default_message = "Something went wrong"

    def __init__(self, message=None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message


class ValidationError(WorkflowError):
    """Malformed input; raised before any request leaves the client."""

    default_message = "Invalid appointment data"

    def __init__(self, message=None, field=None):
        super().__init__(message)
        self.field = field


class SchedulingConflictError(WorkflowError):
    title = "Time Slot Not Available"
    default_message = (
        "This time slot conflicts with another appointment. "
        "Please select a different time."
    )

    def __init__(self, message=None, conflicts=None):
        super().__init__(message)
        self.conflicts = list(conflicts or [])


class AuthenticationError(WorkflowError):
    default_message = "Authentication failed"


class RemoteFailure(WorkflowError):
    """Non-2xx response from the appointment store or the inventory ledger."""

    def __init__(self, message=None, status_code=None, payload=None):
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload


class UsageRecordingError(WorkflowError):
    """
    One or more inventory usage calls failed during completion.

    `recorded` holds the usage records the ledger already accepted; they are
    not rolled back.
    """

    default_message = "Failed to record inventory usage"

    def __init__(self, failures, recorded=None):
        super().__init__()
        self.failures = list(failures)
        self.recorded = list(recorded or [])
