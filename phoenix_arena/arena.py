"""
Arena: registry of live battles and fan-out to spectators.

The Arena is constructed explicitly and handed to whatever needs it (the HTTP
app, the CLI). It owns two collections for the process lifetime:
- battles: battle id -> Battle, never evicted by the scheduler
- spectators: live read-only subscribers receiving every battle event

Durable history is a query over the persistence backend, not over the live map.
"""

import asyncio
import json
from typing import Any, Dict, List, Optional, Protocol, Set, Union, runtime_checkable
from uuid import UUID

from .agent import Agent
from .battle import Battle
from .brain import BrainStore
from .config import Config
from .events import ArenaEvent, StateEvent
from .logging_utils import log_deterministic, log_error, log_info
from .persistence import InMemoryPersistence, PersistenceError, PersistenceStrategy
from .schemas import BattleConfig, BattleHistory, BattleRecord


@runtime_checkable
class Spectator(Protocol):
    """A live subscriber. Transports (websockets, console) implement this."""

    @property
    def is_open(self) -> bool: ...

    async def send(self, data: str) -> None: ...


class Arena:
    """Registry of concurrently running battles plus spectator fan-out.

    Args:
        persistence: Shared storage backend for every battle (defaults to in-memory)
        brain_store: Store agents use to read and write brain files (defaults
            to one confined to ``Config.BRAINS_DIR``)
    """

    def __init__(
        self,
        persistence: Optional[PersistenceStrategy] = None,
        *,
        brain_store: Optional[BrainStore] = None,
    ) -> None:
        self.persistence = persistence or InMemoryPersistence()
        self.brain_store = brain_store or BrainStore(Config.BRAINS_DIR)
        self.battles: Dict[UUID, Battle] = {}
        self.spectators: Set[Spectator] = set()

    async def initialize(self) -> None:
        await self.persistence.initialize()
        log_info(f"Arena ready (persistence: {self.persistence.name})")

    async def close(self) -> None:
        """Cancel queued and in-flight turns of every live battle, then close storage."""
        await asyncio.gather(*(battle.shutdown() for battle in self.battles.values()))
        await self.persistence.close()
        log_info("Arena closed")

    # ------------------------------------------------------------------
    # Spectators
    # ------------------------------------------------------------------

    async def broadcast(self, event: ArenaEvent) -> None:
        """Serialize ``event`` once and send it to every open spectator.

        Spectators whose transport is closed are skipped; ones that fail to
        receive are dropped from the set.
        """
        if not self.spectators:
            return

        data = json.dumps(event.to_wire())
        targets = [spectator for spectator in self.spectators if spectator.is_open]
        results = await asyncio.gather(
            *(spectator.send(data) for spectator in targets), return_exceptions=True
        )

        for spectator, result in zip(targets, results):
            if isinstance(result, Exception):
                log_error(f"Dropping spectator after failed send: {result}")
                self.spectators.discard(spectator)

    async def add_spectator(self, spectator: Spectator) -> None:
        """Register a spectator and send it a snapshot of every live battle."""
        self.spectators.add(spectator)
        snapshot = StateEvent(battles=[battle.view() for battle in self.battles.values()])
        await spectator.send(json.dumps(snapshot.to_wire()))
        log_deterministic(f"Spectator joined ({len(self.spectators)} connected)")

    def remove_spectator(self, spectator: Spectator) -> None:
        self.spectators.discard(spectator)
        log_deterministic(f"Spectator left ({len(self.spectators)} connected)")

    # ------------------------------------------------------------------
    # Battles
    # ------------------------------------------------------------------

    async def create_battle(self, config: Union[BattleConfig, Dict[str, Any]]) -> Battle:
        """Build agents and an initialized battle. The caller starts it.

        Raises:
            pydantic.ValidationError: If a dict config is invalid
            KeyError: If an agent names an unknown soul preset
            BrainPathError: If an agent's brain path leaves the brain directory
        """
        if not isinstance(config, BattleConfig):
            config = BattleConfig.model_validate(config)

        agents = [
            Agent.from_config(agent_config, index=index, brain_store=self.brain_store)
            for index, agent_config in enumerate(config.agents)
        ]
        battle = Battle.from_config(
            config, agents, persistence=self.persistence, broadcast=self.broadcast
        )
        await battle.initialize()
        self.battles[battle.id] = battle

        log_deterministic(f"Created battle {battle.id}: {' vs '.join(a.label for a in agents)}")
        return battle

    def get_battle(self, battle_id: UUID) -> Optional[Battle]:
        return self.battles.get(battle_id)

    def list_battles(self) -> List[Dict[str, Any]]:
        return [battle.to_json() for battle in self.battles.values()]

    async def get_archive(self, limit: int = 50) -> List[BattleRecord]:
        """Completed battles from storage, newest first. Empty if storage fails."""
        try:
            return await self.persistence.list_battles(limit=limit)
        except PersistenceError as exc:
            log_error(f"Could not read archive: {exc}")
            return []

    async def get_battle_history(self, battle_id: UUID) -> Optional[BattleHistory]:
        try:
            return await self.persistence.get_battle_history(battle_id)
        except PersistenceError as exc:
            log_error(f"Could not read battle {battle_id}: {exc}")
            return None

    def health(self) -> Dict[str, Any]:
        return {
            "status": "ok",
            "activeBattles": len(self.battles),
            "spectators": len(self.spectators),
            "persistence": self.persistence.name,
        }
