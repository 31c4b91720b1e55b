"""
Assistant module for mira-assistant.

The per-session conversation pipeline: wake window, proactive gate, context,
tool-calling loop and response dispatch.
"""

from mira_assistant.assistant.agent import AgentResult, ToolCallingAgent
from mira_assistant.assistant.core import AssistantConfig, AssistantState, WakeWindowController
from mira_assistant.assistant.dispatcher import ResponseDispatcher
from mira_assistant.assistant.tools import ExecutionHandoff, Tool, ToolRegistry

__all__ = [
    "AgentResult",
    "AssistantConfig",
    "AssistantState",
    "ExecutionHandoff",
    "ResponseDispatcher",
    "Tool",
    "ToolCallingAgent",
    "ToolRegistry",
    "WakeWindowController",
]
