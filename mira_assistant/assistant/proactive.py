"""
Proactive gate for always-listening mode.

Without a wake word, most speech near the glasses is not meant for the
assistant. A single classifier call decides whether to answer an utterance.
"""

import json
import logging
from dataclasses import dataclass
from typing import Sequence

from mira_assistant.assistant.llm import HumanMessage, LLMBackend, SystemMessage
from mira_assistant.core.text import strip_code_fences

logger = logging.getLogger(__name__)

TRIGGERS = frozenset(
    {"direct_request", "fact_check", "helpful_context", "safety", "notification", "fallback"}
)

GATE_PROMPT = """You decide whether a smart glasses assistant should speak up.
The glasses hear everything around the user. Most speech is conversation with
other people and must be ignored. Respond only when the assistant can clearly help:

- direct_request: the user is asking the assistant something
- fact_check: someone stated a fact that is clearly wrong
- helpful_context: a short fact would clearly help the conversation
- safety: the user may be in danger
- notification: the user refers to a recent notification

Reply with JSON only:
{"should_respond": true|false, "trigger": "<one of the above>", "confidence": 0.0-1.0, "reason": "<short reason>"}"""


@dataclass(frozen=True)
class GateDecision:
    should_respond: bool
    trigger: str
    confidence: float
    reason: str = ""


FAIL_OPEN = GateDecision(should_respond=True, trigger="fallback", confidence=0.0, reason="classifier unavailable")


def parse_decision(text: str) -> GateDecision:
    """
    Parse the classifier reply.

    Raises:
        ValueError: If the reply is not a JSON object with a boolean ``should_respond``
    """
    try:
        data = json.loads(strip_code_fences(text))
    except json.JSONDecodeError as e:
        raise ValueError(f"Gate reply is not JSON: {text!r}") from e
    if not isinstance(data, dict) or not isinstance(data.get("should_respond"), bool):
        raise ValueError(f"Gate reply missing should_respond: {text!r}")

    trigger = data.get("trigger")
    if trigger not in TRIGGERS:
        trigger = "fallback"

    try:
        confidence = float(data.get("confidence", 0.0))
    except (TypeError, ValueError):
        confidence = 0.0
    confidence = min(max(confidence, 0.0), 1.0)

    return GateDecision(
        should_respond=data["should_respond"],
        trigger=trigger,
        confidence=confidence,
        reason=str(data.get("reason", "")),
    )


class ProactiveGate:
    """Classifier deciding whether to answer an ambient utterance."""

    def __init__(self, llm: LLMBackend):
        self.llm = llm

    async def evaluate(self, utterance: str, recent_segments: Sequence[str] = ()) -> GateDecision:
        """Classify an utterance. Any failure fails open."""
        transcript = "\n".join(f"- {s}" for s in recent_segments) or "(none)"
        prompt = f"Recent conversation:\n{transcript}\n\nLatest utterance:\n{utterance}"

        try:
            reply = await self.llm.invoke([SystemMessage(GATE_PROMPT), HumanMessage(prompt)])
            decision = parse_decision(reply.content)
        except Exception as e:
            logger.warning("Proactive gate failed, responding anyway: %s", e)
            return FAIL_OPEN

        logger.debug(
            "Gate: respond=%s trigger=%s confidence=%.2f (%s)",
            decision.should_respond, decision.trigger, decision.confidence, decision.reason,
        )
        return decision
