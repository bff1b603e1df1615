"""
PersistenceStrategy interface for pluggable battle storage.

This module provides the abstract PersistenceStrategy interface and three concrete
implementations for recording battles and their turns. Storage is a side channel:
the scheduler keeps its own in-memory transcript and treats every write as
best-effort, so a failing backend never stalls or corrupts a battle.

Three included implementations:
1. InMemoryPersistence - Dict-based storage, data lost on exit (testing, prototyping)
2. JsonPersistence - One directory per battle, human-readable JSON (single host)
3. PostgresPersistence - Relational storage via asyncpg (production archive)

Logical schema shared by all backends:
- battles: one row per battle, status/start/end updated in place on every transition
- turns: one row appended per accepted turn, never updated

Usage pattern:
    persistence = InMemoryPersistence()  # or JsonPersistence(), PostgresPersistence()
    await persistence.initialize()
    await persistence.create_battle(record)
    await persistence.save_turn(battle_id, turn)
    await persistence.close()
"""

import asyncio
import json
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import AsyncIterator, Dict, List, Optional
from uuid import UUID

import asyncpg
from pydantic import ValidationError

from .config import Config
from .schemas import (
    AgentSummary,
    BattleHistory,
    BattleRecord,
    BattleStatus,
    Turn,
)


class PersistenceError(RuntimeError):
    """Raised when a storage backend cannot read or write.

    Backends wrap their native errors (OSError, asyncpg errors, malformed
    files) in this type so callers have a single thing to catch.
    """


class PersistenceStrategy(ABC):
    """Abstract base class for battle persistence.

    All methods are async so database and file backends can run without
    blocking the event loop that drives the battles.

    Method categories:
    1. Lifecycle: initialize(), close()
    2. Battle rows: create_battle(), update_battle_status(), get_battle(), list_battles()
    3. Turn rows: save_turn(), get_battle_history()
    """

    #: Short backend label used in health output
    name: str = "abstract"

    @abstractmethod
    async def initialize(self) -> None:
        """Prepare the backend (create tables, directories, pools)."""

    @abstractmethod
    async def close(self) -> None:
        """Release backend resources."""

    @abstractmethod
    async def create_battle(self, record: BattleRecord) -> None:
        """
        Insert the row for a new battle.

        Args:
            record: Battle metadata, normally with status ``pending``

        Raises:
            PersistenceError: If the write fails
        """

    @abstractmethod
    async def update_battle_status(
        self,
        battle_id: UUID,
        status: BattleStatus,
        *,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
    ) -> None:
        """
        Update a battle's status in place.

        Timestamps are only overwritten when provided.

        Raises:
            PersistenceError: If the write fails
        """

    @abstractmethod
    async def save_turn(self, battle_id: UUID, turn: Turn) -> None:
        """
        Append one accepted turn.

        Raises:
            PersistenceError: If the write fails
        """

    @abstractmethod
    async def get_battle(self, battle_id: UUID) -> Optional[BattleRecord]:
        """Return the battle row, or None if unknown."""

    @abstractmethod
    async def list_battles(
        self, status: Optional[BattleStatus] = BattleStatus.COMPLETE, limit: int = 50
    ) -> List[BattleRecord]:
        """
        List battle rows, newest start time first.

        Args:
            status: Only return battles in this status (None for all)
            limit: Maximum number of rows
        """

    async def get_battle_history(self, battle_id: UUID) -> Optional[BattleHistory]:
        """Return the battle row with its turns ordered by turn number."""
        record = await self.get_battle(battle_id)
        if record is None:
            return None
        turns = await self.get_turns(battle_id)
        return BattleHistory(**record.model_dump(), turns=turns)

    @abstractmethod
    async def get_turns(self, battle_id: UUID) -> List[Turn]:
        """Return every stored turn for a battle ordered by turn number."""


def _newest_first(records: List[BattleRecord], limit: int) -> List[BattleRecord]:
    ordered = sorted(
        records,
        key=lambda r: r.start_time.timestamp() if r.start_time else float("-inf"),
        reverse=True,
    )
    return ordered[:limit]


class InMemoryPersistence(PersistenceStrategy):
    """In-memory persistence using Python dicts (no database, no files).

    Storage structure:
    - battles: Dict[UUID, BattleRecord]
    - turns: Dict[UUID, List[Turn]] appended in arrival order

    Data is lost when the process exits. Default backend for tests and for
    arenas constructed without an explicit strategy.
    """

    name = "memory"

    def __init__(self):
        self.battles: Dict[UUID, BattleRecord] = {}
        self.turns: Dict[UUID, List[Turn]] = {}

    async def initialize(self) -> None:
        pass

    async def close(self) -> None:
        """
        No-op: data is kept after close so callers can still inspect it.
        """
        pass

    async def create_battle(self, record: BattleRecord) -> None:
        self.battles[record.id] = record
        self.turns.setdefault(record.id, [])

    async def update_battle_status(
        self,
        battle_id: UUID,
        status: BattleStatus,
        *,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
    ) -> None:
        record = self.battles.get(battle_id)
        if record is None:
            return
        update: Dict[str, object] = {"status": status}
        if start_time is not None:
            update["start_time"] = start_time
        if end_time is not None:
            update["end_time"] = end_time
        self.battles[battle_id] = record.model_copy(update=update)

    async def save_turn(self, battle_id: UUID, turn: Turn) -> None:
        self.turns.setdefault(battle_id, []).append(turn)

    async def get_battle(self, battle_id: UUID) -> Optional[BattleRecord]:
        return self.battles.get(battle_id)

    async def list_battles(
        self, status: Optional[BattleStatus] = BattleStatus.COMPLETE, limit: int = 50
    ) -> List[BattleRecord]:
        records = [
            record
            for record in self.battles.values()
            if status is None or record.status == status
        ]
        return _newest_first(records, limit)

    async def get_turns(self, battle_id: UUID) -> List[Turn]:
        return sorted(self.turns.get(battle_id, []), key=lambda t: t.turn)


class JsonPersistence(PersistenceStrategy):
    """File-based persistence using JSON for human-readable archives.

    Directory structure:
    ```
    {base_path}/
      {battle_id}/
        battle.json     # BattleRecord, rewritten on every status change
        turns.jsonl     # one Turn per line, append-only
    ```

    All file I/O runs in a worker thread (asyncio.to_thread) so disk writes
    do not block the turn loop. No locking: one process per directory.
    """

    name = "json"

    def __init__(self, base_path: Path | str = "data/battles"):
        self.base_path = Path(base_path)

    async def initialize(self) -> None:
        try:
            await asyncio.to_thread(self.base_path.mkdir, parents=True, exist_ok=True)
        except OSError as exc:
            raise PersistenceError(f"Cannot create archive directory {self.base_path}: {exc}") from exc

    async def close(self) -> None:
        # Nothing to clean up for JSON persistence
        return None

    async def create_battle(self, record: BattleRecord) -> None:
        battle_dir = self._battle_dir(record.id)

        def _write() -> None:
            battle_dir.mkdir(parents=True, exist_ok=True)
            self._write_record(battle_dir / "battle.json", record)

        await self._run(_write, f"create battle {record.id}")

    async def update_battle_status(
        self,
        battle_id: UUID,
        status: BattleStatus,
        *,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
    ) -> None:
        path = self._battle_dir(battle_id) / "battle.json"

        def _update() -> None:
            if not path.exists():  # Nothing to update yet
                return
            record = BattleRecord.model_validate_json(path.read_text("utf-8"))
            update: Dict[str, object] = {"status": status}
            if start_time is not None:
                update["start_time"] = start_time
            if end_time is not None:
                update["end_time"] = end_time
            self._write_record(path, record.model_copy(update=update))

        await self._run(_update, f"update status of battle {battle_id}")

    async def save_turn(self, battle_id: UUID, turn: Turn) -> None:
        battle_dir = self._battle_dir(battle_id)
        line = json.dumps(turn.to_wire())

        def _append() -> None:
            battle_dir.mkdir(parents=True, exist_ok=True)
            with (battle_dir / "turns.jsonl").open("a", encoding="utf-8") as handle:
                handle.write(line)
                handle.write("\n")

        await self._run(_append, f"save turn {turn.turn} of battle {battle_id}")

    async def get_battle(self, battle_id: UUID) -> Optional[BattleRecord]:
        path = self._battle_dir(battle_id) / "battle.json"

        def _read() -> Optional[BattleRecord]:
            if not path.exists():
                return None
            return BattleRecord.model_validate_json(path.read_text("utf-8"))

        return await self._run(_read, f"read battle {battle_id}")

    async def list_battles(
        self, status: Optional[BattleStatus] = BattleStatus.COMPLETE, limit: int = 50
    ) -> List[BattleRecord]:
        def _scan() -> List[BattleRecord]:
            if not self.base_path.exists():
                return []
            records = []
            for path in self.base_path.glob("*/battle.json"):
                record = BattleRecord.model_validate_json(path.read_text("utf-8"))
                if status is None or record.status == status:
                    records.append(record)
            return records

        records = await self._run(_scan, "list battles")
        return _newest_first(records, limit)

    async def get_turns(self, battle_id: UUID) -> List[Turn]:
        path = self._battle_dir(battle_id) / "turns.jsonl"

        def _read() -> List[Turn]:
            if not path.exists():
                return []
            lines = path.read_text("utf-8").splitlines()
            return [Turn.model_validate_json(line) for line in lines if line]

        turns = await self._run(_read, f"read turns of battle {battle_id}")
        return sorted(turns, key=lambda t: t.turn)

    @staticmethod
    def _write_record(path: Path, record: BattleRecord) -> None:
        path.write_text(json.dumps(record.to_wire(), indent=2), "utf-8")

    async def _run(self, func, action: str):
        try:
            return await asyncio.to_thread(func)
        except (OSError, ValueError, ValidationError) as exc:
            raise PersistenceError(f"JSON persistence failed to {action}: {exc}") from exc

    def _battle_dir(self, battle_id: UUID) -> Path:
        return self.base_path / str(battle_id)


class PostgresPersistence(PersistenceStrategy):
    """PostgreSQL-backed persistence for the battle archive.

    Database schema (created on initialize):
    - battles: id, prompt, objective, max_turns, status, start_time, end_time, agents JSONB
    - turns: auto id, battle_id FK, turn_number, speaker_index, speaker, model, content, timestamp

    Connection management:
    - initialize() creates the asyncpg pool and the tables
    - close() releases the pool
    """

    name = "postgres"

    SCHEMA = """
        CREATE TABLE IF NOT EXISTS battles (
            id UUID PRIMARY KEY,
            prompt TEXT,
            objective TEXT,
            max_turns INTEGER NOT NULL,
            status TEXT NOT NULL,
            start_time TIMESTAMPTZ,
            end_time TIMESTAMPTZ,
            agents JSONB NOT NULL DEFAULT '[]'::jsonb
        );

        CREATE TABLE IF NOT EXISTS turns (
            id BIGSERIAL PRIMARY KEY,
            battle_id UUID NOT NULL REFERENCES battles(id) ON DELETE CASCADE,
            turn_number INTEGER NOT NULL,
            speaker_index INTEGER NOT NULL,
            speaker TEXT NOT NULL,
            model TEXT NOT NULL,
            content TEXT NOT NULL,
            timestamp TIMESTAMPTZ NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_turns_battle ON turns(battle_id);
    """

    def __init__(self, database_url: Optional[str] = None):
        self.database_url = database_url or Config.DATABASE_URL
        self.pool: Optional[asyncpg.Pool] = None

    async def initialize(self) -> None:
        if self.pool is not None:
            return
        async with self._errors("initialize"):
            self.pool = await asyncpg.create_pool(self.database_url)
            async with self.pool.acquire() as conn:
                await conn.execute(self.SCHEMA)

    async def close(self) -> None:
        if self.pool is not None:
            await self.pool.close()
            self.pool = None

    async def create_battle(self, record: BattleRecord) -> None:
        query = """
            INSERT INTO battles (id, prompt, objective, max_turns, status, start_time, end_time, agents)
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8::jsonb)
            ON CONFLICT (id) DO UPDATE
            SET prompt=$2, objective=$3, max_turns=$4, status=$5, start_time=$6, end_time=$7, agents=$8::jsonb
        """
        agents_json = json.dumps([agent.to_wire() for agent in record.agents])

        async with self._connection("create battle") as conn:
            await conn.execute(
                query,
                record.id,
                record.prompt,
                record.objective,
                record.max_turns,
                record.status.value,
                record.start_time,
                record.end_time,
                agents_json,
            )

    async def update_battle_status(
        self,
        battle_id: UUID,
        status: BattleStatus,
        *,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
    ) -> None:
        query = """
            UPDATE battles
            SET status = $2,
                start_time = COALESCE($3, start_time),
                end_time = COALESCE($4, end_time)
            WHERE id = $1
        """

        async with self._connection("update battle status") as conn:
            await conn.execute(query, battle_id, status.value, start_time, end_time)

    async def save_turn(self, battle_id: UUID, turn: Turn) -> None:
        query = """
            INSERT INTO turns (battle_id, turn_number, speaker_index, speaker, model, content, timestamp)
            VALUES ($1, $2, $3, $4, $5, $6, $7)
        """

        async with self._connection("save turn") as conn:
            await conn.execute(
                query,
                battle_id,
                turn.turn,
                turn.speaker_index,
                turn.speaker,
                turn.model,
                turn.content,
                turn.timestamp,
            )

    async def get_battle(self, battle_id: UUID) -> Optional[BattleRecord]:
        query = """
            SELECT id, prompt, objective, max_turns, status, start_time, end_time, agents
            FROM battles
            WHERE id = $1
        """

        async with self._connection("read battle") as conn:
            row = await conn.fetchrow(query, battle_id)

        return self._record_from_row(row) if row else None

    async def list_battles(
        self, status: Optional[BattleStatus] = BattleStatus.COMPLETE, limit: int = 50
    ) -> List[BattleRecord]:
        query = """
            SELECT id, prompt, objective, max_turns, status, start_time, end_time, agents
            FROM battles
            WHERE $1::text IS NULL OR status = $1::text
            ORDER BY start_time DESC NULLS LAST
            LIMIT $2
        """

        async with self._connection("list battles") as conn:
            rows = await conn.fetch(query, status.value if status else None, limit)

        return [self._record_from_row(row) for row in rows]

    async def get_turns(self, battle_id: UUID) -> List[Turn]:
        query = """
            SELECT turn_number, speaker_index, speaker, model, content, timestamp
            FROM turns
            WHERE battle_id = $1
            ORDER BY turn_number
        """

        async with self._connection("read turns") as conn:
            rows = await conn.fetch(query, battle_id)

        return [
            Turn(
                turn=row["turn_number"],
                speaker_index=row["speaker_index"],
                speaker=row["speaker"],
                model=row["model"],
                content=row["content"],
                timestamp=row["timestamp"],
            )
            for row in rows
        ]

    @staticmethod
    def _record_from_row(row) -> BattleRecord:
        agents = row["agents"]
        if isinstance(agents, str):
            agents = json.loads(agents)
        return BattleRecord(
            id=row["id"],
            prompt=row["prompt"],
            objective=row["objective"],
            max_turns=row["max_turns"],
            status=BattleStatus(row["status"]),
            start_time=row["start_time"],
            end_time=row["end_time"],
            agents=[AgentSummary.model_validate(agent) for agent in agents or []],
        )

    @asynccontextmanager
    async def _errors(self, action: str) -> AsyncIterator[None]:
        try:
            yield
        except (asyncpg.PostgresError, OSError) as exc:
            raise PersistenceError(f"Postgres failed to {action}: {exc}") from exc

    @asynccontextmanager
    async def _connection(self, action: str) -> AsyncIterator[asyncpg.Connection]:
        if self.pool is None:
            raise PersistenceError(f"Postgres persistence not initialized (tried to {action})")
        async with self._errors(action):
            async with self.pool.acquire() as conn:
                yield conn


def persistence_from_config() -> PersistenceStrategy:
    """Postgres when DATABASE_URL is set, JSON files otherwise."""
    if Config.DATABASE_URL:
        return PostgresPersistence(Config.DATABASE_URL)
    return JsonPersistence(Config.ARCHIVE_DIR)
