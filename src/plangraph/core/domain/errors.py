"""
Orchestration Errors

Error taxonomy for planning and executing task graphs:
- Interruption: the task's master cancellation signal was observed
- Configuration: unknown agent types, empty/malformed workflows, cycles
- LLM: transient stream failures and policy terminations
- Agent execution: failures raised by agent runners

Hook failures are not represented here; they are logged and suppressed at
the hook boundary.
"""


class OrchestrationError(Exception):
    """Base class for all orchestration errors."""


class TaskInterruptedError(OrchestrationError):
    """Raised when the task's master cancellation signal is observed."""

    def __init__(self, reason: str | None = None):
        self.reason = reason
        super().__init__("Operation was interrupted")


class StepInterruptedError(OrchestrationError):
    """Raised when an in-flight step operation is cancelled by pause or abort."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Step operation cancelled: {reason}")


class ConfigurationError(OrchestrationError):
    """Fatal setup problem. Never retried."""


class UnknownAgentError(ConfigurationError):
    """No runner is registered for a declared agent's type name."""

    def __init__(self, agent_name: str):
        self.agent_name = agent_name
        super().__init__(f"Unknown agent: {agent_name}")


class EmptyWorkflowError(ConfigurationError):
    """The workflow has nothing to execute."""


class CircularDependencyError(ConfigurationError):
    """No remaining agent has all of its dependencies satisfied."""

    def __init__(self, agent_ids: list[str]):
        self.agent_ids = agent_ids
        super().__init__(
            "Circular dependency between agents: " + ", ".join(agent_ids)
        )


class WorkflowParseError(ConfigurationError):
    """The final plan output could not be parsed into a workflow."""


class TaskNotFoundError(ConfigurationError):
    """The task id is not registered."""

    def __init__(self, task_id: str):
        self.task_id = task_id
        super().__init__("The task does not exist")


class LLMError(OrchestrationError):
    """Base class for language-model failures."""


class LLMStreamError(LLMError):
    """Transient failure while streaming a completion."""


class PolicyTerminationError(LLMError):
    """The provider ended the completion for a reason retrying will not fix."""


class ContentFilterError(PolicyTerminationError):
    """The provider refused the completion on content-policy grounds."""


class AbnormalFinishError(PolicyTerminationError):
    """The completion was terminated for an unspecified reason."""


class AgentExecutionError(OrchestrationError):
    """An agent runner gave up on its task."""


class AgentBlockedError(OrchestrationError):
    """A before_agent_start hook blocked the agent."""
