"""
Tool Protocol

Contract for tools callable by the reference agent runner through native
function calling.
"""

from typing import Any, Protocol


class ToolProtocol(Protocol):
    """A callable tool exposed to an agent runner."""

    @property
    def name(self) -> str:
        ...

    @property
    def description(self) -> str:
        ...

    @property
    def parameters_schema(self) -> dict[str, Any]:
        """JSON Schema of the tool's keyword arguments."""
        ...

    async def execute(self, **kwargs: Any) -> dict[str, Any]:
        """
        Run the tool.

        Returns:
            Dict with ``success`` and either ``output`` or ``error``.
        """
        ...
