"""Agent CLI process handling."""

from ccpa.agent.executor import AgentExecutor, check_agent_command
from ccpa.agent.reader import AgentResult, ProgressUpdate, StreamReader, TextUpdate

__all__ = [
    "AgentExecutor",
    "AgentResult",
    "ProgressUpdate",
    "StreamReader",
    "TextUpdate",
    "check_agent_command",
]
