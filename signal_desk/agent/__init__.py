from signal_desk.agent.loop import SelectionAgent
from signal_desk.agent.models import (
    AgentScoringConfig,
    CandidateSignal,
    SelectionResult,
    SignalSelection,
    ToolCallLogEntry,
    ToolName,
)
from signal_desk.agent.tools import ToolExecutor

__all__ = [
    "AgentScoringConfig",
    "CandidateSignal",
    "SelectionAgent",
    "SelectionResult",
    "SignalSelection",
    "ToolCallLogEntry",
    "ToolExecutor",
    "ToolName",
]
