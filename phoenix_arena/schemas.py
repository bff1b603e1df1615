"""
Pydantic schemas for Phoenix Arena.

All data structures exchanged between the scheduler, its agents, storage
backends and spectators are defined here.

Design Philosophy:
- Wire-facing models serialize to camelCase (``battleId``, ``speakerIndex``)
  so spectator clients and stored archives share one shape
- Brain documents accept the legacy camelCase JSON written by earlier tools
  and keep unknown keys intact so a save never drops user data
- Turns are frozen: once appended to a transcript they are never mutated
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Tuple, Union
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .config import Config


class WireModel(BaseModel):
    """Base for models that travel over the wire in camelCase."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


# ============================================================================
# Enumerations
# ============================================================================


class ProviderKind(str, Enum):
    """Provider variants an agent can be bound to.

    ``anthropic`` and ``openai`` are hosted chat-completion APIs;
    ``ollama`` is a self-hosted chat endpoint.
    """

    ANTHROPIC = "anthropic"
    OPENAI = "openai"
    OLLAMA = "ollama"


class BattleStatus(str, Enum):
    """Battle lifecycle: pending -> running <-> paused, running -> complete."""

    PENDING = "pending"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETE = "complete"


# ============================================================================
# Brain (per-agent memory document)
# ============================================================================


class KnowledgeEntry(BaseModel):
    """A single remembered concept: display name plus definition."""

    model_config = ConfigDict(extra="allow")

    name: Optional[str] = Field(None, description="Display name; the entry key is used when absent")
    definition: str = Field("", description="What the agent knows about the concept")


class KnowledgeGraph(BaseModel):
    """Ordered knowledge collection stored as ``[key, entry]`` pairs."""

    model_config = ConfigDict(extra="allow")

    concepts: List[Tuple[str, KnowledgeEntry]] = Field(default_factory=list)


class MemoryEntry(BaseModel):
    """Episodic memory appended by ``Agent.add_memory``."""

    key: str
    value: Any = None
    timestamp: datetime


class BrainStats(BaseModel):
    """Aggregate counters carried by a brain document."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    total_conversations: int = Field(0, alias="totalConversations")
    concepts_learned: int = Field(0, alias="conceptsLearned")


class Brain(BaseModel):
    """Durable memory document owned by exactly one agent.

    The JSON layout matches brain files produced by earlier tooling::

        {
          "soul": "...",
          "knowledgeGraph": {"concepts": [["key", {"name": "...", "definition": "..."}]]},
          "conversationMemories": [{"key": "...", "value": ..., "timestamp": ...}],
          "stats": {"totalConversations": 3, "conceptsLearned": 12}
        }

    Loaded once when a battle initializes, mutated in memory through
    ``Agent.add_memory`` and written back once the battle completes.
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    soul: Optional[str] = Field(None, description="Fallback persona used when the agent has no soul text")
    knowledge_graph: KnowledgeGraph = Field(default_factory=KnowledgeGraph, alias="knowledgeGraph")
    conversation_memories: List[MemoryEntry] = Field(
        default_factory=list, alias="conversationMemories"
    )
    stats: Optional[BrainStats] = None

    def to_document(self) -> Dict[str, Any]:
        """Serialize in the on-disk camelCase layout, keeping unknown keys."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# ============================================================================
# Conversation
# ============================================================================


class Message(BaseModel):
    """One entry of an agent's view of the transcript.

    ``self`` entries were spoken by the addressed agent, ``other`` entries by
    anyone else (including the scheduler's framing text).
    """

    role: Literal["self", "other"]
    content: str


class Turn(WireModel):
    """Immutable record of one agent's message within a battle."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    turn: int = Field(..., ge=0, description="0-based turn index")
    speaker_index: int = Field(..., ge=0)
    speaker: str = Field(..., description="Speaker display name")
    model: str = Field(..., description="Model identifier that produced the content")
    content: str
    timestamp: datetime


class AgentSummary(WireModel):
    """Public view of an agent: who it is and what runs it."""

    name: str
    model: str
    has_memory: bool = False


class BattleRecord(WireModel):
    """One row of the ``battles`` table."""

    id: UUID
    prompt: Optional[str] = None
    objective: Optional[str] = None
    max_turns: int
    status: BattleStatus
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    agents: List[AgentSummary] = Field(default_factory=list)


class BattleHistory(BattleRecord):
    """Archived battle together with its ordered turns."""

    turns: List[Turn] = Field(default_factory=list)


class BattleView(WireModel):
    """Snapshot of a live battle as shown to spectators."""

    id: UUID
    agents: List[AgentSummary]
    prompt: Optional[str] = None
    objective: Optional[str] = None
    status: BattleStatus
    turn: int
    max_turns: int
    history: List[Turn] = Field(default_factory=list)


# ============================================================================
# Configuration input surface
# ============================================================================


class AgentConfig(WireModel):
    """Per-agent settings consumed by ``Arena.create_battle``.

    Every field is optional. ``brain`` is either an inline brain document or a
    path to one; ``soul_preset`` names an entry of ``phoenix_arena.presets``
    whose name/soul/brain fill in anything not given explicitly.
    """

    id: Optional[str] = None
    name: Optional[str] = None
    display_name: Optional[str] = None
    provider: ProviderKind = Field(default_factory=lambda: ProviderKind(Config.DEFAULT_PROVIDER))
    model: Optional[str] = Field(None, description="Defaults to the provider's configured model")
    soul: Optional[str] = None
    soul_preset: Optional[str] = None
    prompt: Optional[str] = Field(None, description="Individual directive, used on the agent's first turn")
    brain: Union[Brain, str, None] = None
    endpoint: Optional[str] = Field(None, description="Base URL override for self-hosted providers")
    anonymous: bool = False
    max_tokens: int = Field(default_factory=lambda: Config.DEFAULT_MAX_TOKENS, gt=0)


class BattleConfig(WireModel):
    """Settings for one battle. Agent count is limited to 2-4 here, not in the scheduler."""

    id: UUID = Field(default_factory=uuid4)
    agents: List[AgentConfig] = Field(..., min_length=2, max_length=4)
    prompt: Optional[str] = Field(None, description="Shared prompt shown to every agent")
    objective: Optional[str] = None
    max_turns: int = Field(default_factory=lambda: Config.DEFAULT_MAX_TURNS, ge=0)
    turn_delay: float = Field(
        default_factory=lambda: Config.DEFAULT_TURN_DELAY_SECONDS,
        ge=0,
        description="Seconds between turns",
    )
    max_words: Optional[int] = Field(None, ge=0, description="Falsy disables the word limit")
    anonymous: bool = False
    max_retries: int = Field(0, ge=0, description="Extra attempts after a provider failure")
