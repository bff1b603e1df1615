"""Broadcast event envelope.

Every event carries a ``type`` discriminator and serializes to camelCase JSON
via ``to_wire()``. Battles emit these; the arena serializes each one once and
fans it out to spectators.
"""

from datetime import datetime
from typing import List, Literal, Optional
from uuid import UUID

from .schemas import AgentSummary, BattleView, Turn, WireModel


class ArenaEvent(WireModel):
    type: str


class StateEvent(ArenaEvent):
    """Snapshot sent to a spectator when it joins."""

    type: Literal["state"] = "state"
    battles: List[BattleView]


class BattleStartEvent(ArenaEvent):
    type: Literal["battle_start"] = "battle_start"
    battle_id: UUID
    agents: List[AgentSummary]
    prompt: Optional[str] = None


class TurnEvent(ArenaEvent):
    type: Literal["turn"] = "turn"
    battle_id: UUID
    turn: int
    speaker_index: int
    speaker: str
    model: str
    content: str
    timestamp: datetime

    @classmethod
    def from_turn(cls, battle_id: UUID, turn: Turn) -> "TurnEvent":
        return cls(battle_id=battle_id, **turn.model_dump())


class PausedEvent(ArenaEvent):
    type: Literal["paused"] = "paused"
    battle_id: UUID


class ResumedEvent(ArenaEvent):
    type: Literal["resumed"] = "resumed"
    battle_id: UUID


class CompleteEvent(ArenaEvent):
    type: Literal["complete"] = "complete"
    battle_id: UUID
    turns: int
    duration: int  # milliseconds


class ErrorEvent(ArenaEvent):
    type: Literal["error"] = "error"
    battle_id: UUID
    error: str


__all__ = [
    "ArenaEvent",
    "StateEvent",
    "BattleStartEvent",
    "TurnEvent",
    "PausedEvent",
    "ResumedEvent",
    "CompleteEvent",
    "ErrorEvent",
]
