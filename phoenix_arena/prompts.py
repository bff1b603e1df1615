"""Prompt assembly for agents and battles.

The system prompt is an ordered tuple of sections. Each section is a pure
function of the agent (and its brain) that returns text or None; absent
sections are skipped and the rest are joined with blank lines.

Section order:
1. identity         "You are <name>." unless the agent is anonymous
2. persona          the agent's soul text
3. fallback persona the brain's soul, only when no soul text was given
4. knowledge        first KNOWLEDGE_LIMIT knowledge entries
5. memories         most recent MEMORY_LIMIT episodic memories, oldest first
6. counters         one-line conversation/concept summary

Battle framing (opening line, first-turn prefix, word limit) lives here too so
every piece of text the scheduler sends is built in one place.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any, Callable, Optional, Sequence, Tuple

if TYPE_CHECKING:  # pragma: no cover - import only for type hints
    from .agent import Agent

DEFAULT_OPENING = "Begin."
KNOWLEDGE_LIMIT = 30
MEMORY_LIMIT = 10

PromptSection = Callable[["Agent"], Optional[str]]


# ============================================================================
# System prompt sections
# ============================================================================


def identity_section(agent: "Agent") -> Optional[str]:
    if agent.anonymous:
        return None
    return f"You are {agent.label}."


def persona_section(agent: "Agent") -> Optional[str]:
    return agent.soul or None


def fallback_persona_section(agent: "Agent") -> Optional[str]:
    if agent.soul or agent.brain is None:
        return None
    return agent.brain.soul or None


def knowledge_section(agent: "Agent") -> Optional[str]:
    brain = agent.brain
    if brain is None or not brain.knowledge_graph.concepts:
        return None
    lines = ["Key knowledge you remember:"]
    for key, entry in brain.knowledge_graph.concepts[:KNOWLEDGE_LIMIT]:
        lines.append(f"- {entry.name or key}: {entry.definition}")
    return "\n".join(lines)


def render_memory_value(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, default=str)


def memory_section(agent: "Agent") -> Optional[str]:
    brain = agent.brain
    if brain is None or not brain.conversation_memories:
        return None
    lines = ["Recent memories:"]
    for memory in brain.conversation_memories[-MEMORY_LIMIT:]:
        lines.append(f"- {memory.key}: {render_memory_value(memory.value)}")
    return "\n".join(lines)


def counter_section(agent: "Agent") -> Optional[str]:
    brain = agent.brain
    if brain is None or brain.stats is None:
        return None
    stats = brain.stats
    return (
        f"You have had {stats.total_conversations} conversations "
        f"and learned {stats.concepts_learned} concepts."
    )


SYSTEM_PROMPT_SECTIONS: Tuple[PromptSection, ...] = (
    identity_section,
    persona_section,
    fallback_persona_section,
    knowledge_section,
    memory_section,
    counter_section,
)


def compose_system_prompt(
    agent: "Agent", sections: Sequence[PromptSection] = SYSTEM_PROMPT_SECTIONS
) -> Optional[str]:
    """Join the non-empty sections; None when every section is absent."""
    parts = [text for text in (section(agent) for section in sections) if text]
    if not parts:
        return None
    return "\n\n".join(parts)


# ============================================================================
# Battle framing
# ============================================================================


def opening_message(
    *,
    prompt: Optional[str],
    directive: Optional[str],
    participants: Sequence[str],
    anonymous: bool,
    objective: Optional[str] = None,
) -> str:
    """Input handed to speaker 0 when a battle starts.

    Shared prompt, else the first speaker's directive, else ``DEFAULT_OPENING``.
    Unless the battle is anonymous the other participants are named.
    """
    opening = prompt or directive or DEFAULT_OPENING
    if objective:
        opening += f"\n\nObjective: {objective}"
    if not anonymous and participants:
        opening += (
            "\n\nYou are starting the conversation. "
            f"Other participants: {', '.join(participants)}"
        )
    return opening


def first_turn_prefix(
    shared_prompt: Optional[str], directive: Optional[str], *, anonymous: bool
) -> str:
    """Framing prepended to an agent's first message; empty when there is nothing to say."""
    parts = []
    if shared_prompt:
        parts.append(f"[Context: {shared_prompt}]")
    if directive:
        parts.append(directive if anonymous else f"[Your directive: {directive}]")
    if not parts:
        return ""
    return "\n\n".join(parts) + "\n\n"


def word_limit_prefix(max_words: Optional[int]) -> str:
    if not max_words:
        return ""
    return f"[Respond in {max_words} words or fewer.]\n\n"
