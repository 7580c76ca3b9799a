"""
Engine exception hierarchy.

PolicyBlockedError is a routing outcome rather than a failure: whoever catches it
sends the step to the approval queue (or defers it) instead of failing it.
"""


class EngineError(Exception):
    """Base class for all campaign engine errors."""


class NotFoundError(EngineError):
    def __init__(self, kind: str, record_id: str):
        self.kind = kind
        self.record_id = record_id
        super().__init__(f"{kind} not found: {record_id}")


class WorkflowValidationError(EngineError):
    """A workflow definition was rejected before any steps were created."""

    def __init__(self, problems):
        self.problems = list(problems)
        super().__init__("Invalid workflow: " + "; ".join(self.problems))


class ExecutionError(EngineError):
    """The channel sender reported a failure or raised."""

    def __init__(self, message: str, channel: str = None, retryable: bool = False):
        self.channel = channel
        self.retryable = retryable
        super().__init__(message)


class PolicyBlockedError(EngineError):
    """A safety rule stopped automatic dispatch; the step needs a human or a later slot."""

    def __init__(self, reason: str, remaining_today: int = None, remaining_this_week: int = None):
        self.reason = reason
        self.remaining_today = remaining_today
        self.remaining_this_week = remaining_this_week
        super().__init__(reason)


class InvalidTransitionError(EngineError):
    def __init__(self, step_id: str, from_status: str, to_status: str, detail: str = ""):
        self.step_id = step_id
        self.from_status = from_status
        self.to_status = to_status
        msg = f"Step {step_id}: cannot move from '{from_status}' to '{to_status}'"
        super().__init__(f"{msg} ({detail})" if detail else msg)


class DuplicateApprovalError(EngineError):
    def __init__(self, step_id: str, approval_id: str = None):
        self.step_id = step_id
        self.approval_id = approval_id
        super().__init__(f"Step {step_id} already has an open approval item"
                         + (f" ({approval_id})" if approval_id else ""))


class ApprovalConflictError(EngineError):
    def __init__(self, approval_id: str, status: str):
        self.approval_id = approval_id
        self.status = status
        super().__init__(f"Approval {approval_id} is already {status}")


class CampaignStateError(EngineError):
    """A lifecycle operation was not valid for the campaign's current status."""

    def __init__(self, campaign_id: str, status: str, operation: str):
        self.campaign_id = campaign_id
        self.status = status
        self.operation = operation
        super().__init__(f"Cannot {operation} campaign {campaign_id} while it is {status}")
