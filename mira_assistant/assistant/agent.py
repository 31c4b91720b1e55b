"""
Bounded tool-calling loop.

One query runs as a short exchange with the model: the model may call tools,
each call gets exactly one result, and the exchange ends on a
``Final Answer:`` marker, a handoff, a timer event or an exhausted turn budget.
"""

import json
import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Optional

from mira_assistant.assistant.context import ContextBundle
from mira_assistant.assistant.events import ToolEvent, parse_tool_event
from mira_assistant.assistant.llm import (
    AIMessage,
    ConversationMessage,
    HumanMessage,
    LLMBackend,
    SystemMessage,
    ToolCall,
    ToolMessage,
)
from mira_assistant.assistant.tools import ExecutionHandoff, ToolRegistry

logger = logging.getLogger(__name__)

FINAL_ANSWER_MARKER = "Final Answer:"
EMPTY_TOOL_RESULT = "Tool executed successfully but did not return any information."
GENERIC_ERROR = "Error processing query."

SYSTEM_PROMPT_TEMPLATE = """You are Mira, a helpful, witty, and concise AI assistant living in smart glasses. You have a friendly, playful personality and always answer in character as Mira. When asked about yourself or your abilities, answer as the smart glasses assistant and mention the tools you can use.

The user talks to you by saying a wake word and then asking a question. Answer the question as well as you can and infer the intent even when details are missing. The query may contain unrelated speech; ignore it. Answer in 15 words or less, telegraph style, no newlines, but not so brief that key facts are lost (for weather, give temperature and rain).

Guidelines:
1. Use the "Search_Engine" tool to confirm facts or find details you do not know.
2. Use any other tool when it helps.
3. Plan how to find the answer, then carry out the plan.
4. When you can answer, write it on a new line prefixed by "Final Answer:":
   "Final Answer: <concise answer>"
5. If the query is empty or meaningless, reply Final Answer: No query provided.
6. Today's date is {date}.
7. For place-dependent questions (weather, news, events) use the user's location below.

{location_context}{notifications_context}Tools:
{tool_names}

Always include the Final Answer: marker in your final response."""


@dataclass
class AgentResult:
    """Outcome of one query through the loop."""

    text: Optional[str] = None
    handoff: Optional[ExecutionHandoff] = None
    event: Optional[ToolEvent] = None
    failed: bool = False
    turns: int = 0

    @property
    def is_empty(self) -> bool:
        return not self.failed and self.handoff is None and self.event is None and not self.text


def extract_final_answer(text: str) -> Optional[str]:
    """Return the trimmed text after the final-answer marker, or None."""
    if FINAL_ANSWER_MARKER not in text:
        return None
    return text.split(FINAL_ANSWER_MARKER, 1)[1].strip()


class ConversationMemory:
    """
    Per-session message history shared across queries.

    Stores whole exchanges (human message through the last tool result or AI
    message) so trimming never separates a tool call from its result.
    """

    def __init__(self, max_exchanges: int = 5):
        self.max_exchanges = max_exchanges
        self._exchanges: list[list[ConversationMessage]] = []

    def add_exchange(self, messages: list[ConversationMessage]) -> None:
        if not messages or self.max_exchanges <= 0:
            return
        # Photos are only relevant to the query they were taken for
        stored = [replace(m, image=None) if isinstance(m, HumanMessage) else m for m in messages]
        self._exchanges.append(stored)
        if len(self._exchanges) > self.max_exchanges:
            self._exchanges = self._exchanges[-self.max_exchanges:]

    def messages(self) -> list[ConversationMessage]:
        return [m for exchange in self._exchanges for m in exchange]

    def clear(self) -> None:
        self._exchanges.clear()

    def __len__(self) -> int:
        return len(self._exchanges)


class ToolCallingAgent:
    """Runs queries through the model with the session's tools."""

    def __init__(
        self,
        llm: LLMBackend,
        registry: ToolRegistry,
        max_turns: int = 5,
        memory: Optional[ConversationMemory] = None,
    ):
        self.llm = llm
        self.registry = registry
        self.max_turns = max_turns
        self.memory = memory if memory is not None else ConversationMemory()

    def build_system_prompt(self, bundle: ContextBundle) -> str:
        return SYSTEM_PROMPT_TEMPLATE.format(
            date=datetime.now(timezone.utc).strftime("%a, %d %b %Y"),
            location_context=bundle.location_text,
            notifications_context=bundle.notifications_text,
            tool_names=self.registry.describe(),
        )

    async def run(self, query: str, bundle: Optional[ContextBundle] = None) -> AgentResult:
        """
        Answer one query.

        Model failures are caught here: the result carries the generic error
        text and ``failed=True``. Tool failures never abort the loop.
        """
        bundle = bundle or ContextBundle()
        exchange: list[ConversationMessage] = [HumanMessage(content=query, image=bundle.image)]
        logger.info("Query: %s", query)

        try:
            result = await self._loop(bundle, exchange)
        except Exception:
            logger.exception("Model invocation failed")
            result = AgentResult(text=GENERIC_ERROR, failed=True)
        finally:
            self.memory.add_exchange(exchange)

        logger.info("Result after %d turn(s): %s", result.turns, result.text)
        return result

    async def _loop(self, bundle: ContextBundle, exchange: list[ConversationMessage]) -> AgentResult:
        system = SystemMessage(content=self.build_system_prompt(bundle))
        history = self.memory.messages()
        tools = self.registry.definitions() or None

        turns = 0
        while turns < self.max_turns:
            turns += 1
            response: AIMessage = await self.llm.invoke([system, *history, *exchange], tools)
            exchange.append(response)
            logger.debug("Turn %d: %r (%d tool call(s))", turns, response.content, len(response.tool_calls))

            for index, call in enumerate(response.tool_calls):
                message, output = await self._execute(call)
                exchange.append(message)

                if isinstance(output, ExecutionHandoff):
                    self._skip_remaining(response.tool_calls[index + 1:], exchange)
                    logger.info("Tool %s handed off execution", call.name)
                    return AgentResult(handoff=output, turns=turns)

                event = parse_tool_event(message.content) if message.status == "ok" else None
                if event is not None:
                    self._skip_remaining(response.tool_calls[index + 1:], exchange)
                    return AgentResult(text=message.content, event=event, turns=turns)

            answer = extract_final_answer(response.content)
            if answer is not None:
                return AgentResult(text=answer, turns=turns)

        logger.warning("Turn budget of %d exhausted without a final answer", self.max_turns)
        return AgentResult(turns=turns)

    async def _execute(self, call: ToolCall) -> tuple[ToolMessage, object]:
        tool = self.registry.get(call.name)
        if tool is None:
            logger.warning("Model called unknown tool: %s", call.name)
            return (
                ToolMessage(call.id, call.name, f"Tool {call.name} unavailable", status="error"),
                None,
            )

        try:
            output = await tool.invoke(call.arguments)
        except Exception as e:
            logger.error("Tool error: %s: %s", call.name, e)
            return ToolMessage(call.id, call.name, f"Error executing {call.name}: {e}", status="error"), None

        logger.debug("Tool: %s(%s)", call.name, json.dumps(call.arguments))
        if isinstance(output, ExecutionHandoff):
            content = output.message or f"{call.name} took over"
            return ToolMessage(call.id, call.name, content), output
        if not output:
            output = EMPTY_TOOL_RESULT
        return ToolMessage(call.id, call.name, output), output

    @staticmethod
    def _skip_remaining(calls: list[ToolCall], exchange: list[ConversationMessage]) -> None:
        for call in calls:
            exchange.append(
                ToolMessage(call.id, call.name, "Skipped: the exchange already ended", status="error")
            )
