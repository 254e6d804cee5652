"""Exception taxonomy for AgentFlow.

Unmet dependencies and rule-triggered stops are not exceptions: they are
recorded as Step status ``skipped`` and Plan status ``cancelled``.
"""


class AgentFlowError(Exception):
    """Base class for all AgentFlow errors."""

    pass


class NotFoundError(AgentFlowError):
    """Raised when a plan, rule or memory is unknown to the requesting agent."""

    pass


class ValidationError(AgentFlowError):
    """Raised when a step, condition, action or rule has a malformed shape."""

    pass


class ExecutionFailure(AgentFlowError):
    """Raised when a tool/LLM invocation or a persistence call fails."""

    pass


class ToolNotFoundError(ExecutionFailure):
    """Raised when a step names a tool that is not registered."""

    pass


class PlanStateError(AgentFlowError):
    """Raised when an operation is not allowed in the plan's current status."""

    pass
