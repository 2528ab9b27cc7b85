"""Agent core: turn orchestration, data aggregation and action execution."""

from hrdesk.agent.executor import ActionExecutor
from hrdesk.agent.orchestrator import ChatReply, Orchestrator, build_orchestrator

__all__ = ["ActionExecutor", "ChatReply", "Orchestrator", "build_orchestrator"]
