"""External coding agent invocation."""

from .invoker import AgentInvoker
from .types import AgentResult, AgentStatus, Capability

__all__ = ["AgentInvoker", "AgentResult", "AgentStatus", "Capability"]
