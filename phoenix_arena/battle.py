"""
Battle: the round-robin turn scheduler.

Drives an alternating conversation between N agents:
1. Build the speaker's view of the transcript (self/other roles)
2. Ask the speaker's provider for a reply
3. Append the Turn, persist it, broadcast it
4. Advance the speaker and queue the next turn after the inter-turn delay

Lifecycle: pending -> running <-> paused, running -> complete. There is no way
back out of complete.

Concurrency model: every turn runs inside a per-battle asyncio task. A turn
queues its successor as a new task before finishing and each task waits for
its predecessor, so turns never overlap and at most one provider call is in
flight per battle. ``pause()`` cancels a queued turn that is still waiting out
the delay. A provider call already in flight is allowed to finish, but its
reply is discarded.

Both rules hang off one scheduling generation, bumped by every ``pause()``
and ``resume()``. A queued turn only runs if the generation it was scheduled
in is still current once its predecessor finished and its delay elapsed, and
a reply only commits if no pause or resume happened while it was produced.
Resumed turns read their input from the transcript when they run, not when
they were queued.
"""

import asyncio
from datetime import datetime, timezone
from typing import Awaitable, Callable, List, Optional
from uuid import UUID, uuid4

from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_fixed

from .agent import Agent
from .config import Config
from .events import (
    ArenaEvent,
    BattleStartEvent,
    CompleteEvent,
    ErrorEvent,
    PausedEvent,
    ResumedEvent,
    TurnEvent,
)
from .logging_utils import (
    Color,
    colored,
    log_deterministic,
    log_error,
    log_info,
    log_llm,
    log_success,
    preview,
)
from .persistence import InMemoryPersistence, PersistenceError, PersistenceStrategy
from .prompts import first_turn_prefix, opening_message, word_limit_prefix
from .providers import ProviderError
from .schemas import BattleConfig, BattleRecord, BattleStatus, BattleView, Message, Turn

BroadcastFn = Callable[[ArenaEvent], Awaitable[None]]


async def _no_broadcast(event: ArenaEvent) -> None:
    return None


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Battle:
    """Turn-scheduling state machine for one conversation.

    Args:
        agents: Ordered participants; speaker 0 opens
        battle_id: Identifier (generated when omitted)
        prompt: Shared prompt shown to every agent
        objective: Optional objective appended to the opening line
        max_turns: Turns to produce before completing
        turn_delay: Seconds to wait between turns
        max_words: Word limit added to every outgoing message (falsy disables)
        anonymous: Do not disclose participant names in the opening line
        max_retries: Extra provider attempts per turn before giving up
        persistence: Storage backend (defaults to in-memory)
        broadcast: Async callable receiving every event
    """

    def __init__(
        self,
        agents: List[Agent],
        *,
        battle_id: Optional[UUID] = None,
        prompt: Optional[str] = None,
        objective: Optional[str] = None,
        max_turns: int = Config.DEFAULT_MAX_TURNS,
        turn_delay: float = Config.DEFAULT_TURN_DELAY_SECONDS,
        max_words: Optional[int] = None,
        anonymous: bool = False,
        max_retries: int = 0,
        persistence: Optional[PersistenceStrategy] = None,
        broadcast: Optional[BroadcastFn] = None,
    ) -> None:
        if not agents:
            raise ValueError("A battle needs at least one agent")

        self.id: UUID = battle_id or uuid4()
        self.agents = agents
        self.prompt = prompt
        self.objective = objective
        self.max_turns = max_turns
        self.turn_delay = turn_delay
        self.max_words = max_words
        self.anonymous = anonymous
        self.max_retries = max_retries
        self.persistence = persistence or InMemoryPersistence()
        self.broadcast = broadcast or _no_broadcast

        self.history: List[Turn] = []
        self.turn = 0
        self.current_speaker = 0
        self.status = BattleStatus.PENDING
        self.start_time: Optional[datetime] = None
        self.end_time: Optional[datetime] = None

        self._opening: Optional[str] = None
        self._last_input: Optional[str] = None
        self._failed = False
        # Bumped by every pause and resume; work from an older generation is dropped
        self._generation = 0
        self._task: Optional[asyncio.Task] = None
        self._waiting = False

    @classmethod
    def from_config(
        cls,
        config: BattleConfig,
        agents: List[Agent],
        *,
        persistence: Optional[PersistenceStrategy] = None,
        broadcast: Optional[BroadcastFn] = None,
    ) -> "Battle":
        return cls(
            agents,
            battle_id=config.id,
            prompt=config.prompt,
            objective=config.objective,
            max_turns=config.max_turns,
            turn_delay=config.turn_delay,
            max_words=config.max_words,
            anonymous=config.anonymous,
            max_retries=config.max_retries,
            persistence=persistence,
            broadcast=broadcast,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """Load every agent's brain and record the pending battle row."""
        for agent in self.agents:
            await agent.load_brain()

        record = BattleRecord(
            id=self.id,
            prompt=self.prompt,
            objective=self.objective,
            max_turns=self.max_turns,
            status=BattleStatus.PENDING,
            agents=[agent.summary() for agent in self.agents],
        )
        await self._persist(self.persistence.create_battle(record), "create battle record")

    async def start(self) -> None:
        """Switch to running, announce the battle and queue the opening turn."""
        if self.status is not BattleStatus.PENDING:
            raise RuntimeError(f"Battle {self.id} already started (status: {self.status.value})")

        self.status = BattleStatus.RUNNING
        self.start_time = _now()
        await self._persist(
            self.persistence.update_battle_status(
                self.id, BattleStatus.RUNNING, start_time=self.start_time
            ),
            "record start",
        )
        await self.broadcast(
            BattleStartEvent(
                battle_id=self.id,
                agents=[agent.summary() for agent in self.agents],
                prompt=self.prompt,
            )
        )

        log_info(
            f"Battle {self.id} started: {' vs '.join(a.label for a in self.agents)} "
            f"({self.max_turns} turns)"
        )

        self._opening = self.opening_message()
        self._schedule(self._opening, delay=0)

    async def pause(self) -> bool:
        """Stop scheduling further turns. Returns False unless the battle was running."""
        if self.status is not BattleStatus.RUNNING:
            return False

        self.status = BattleStatus.PAUSED
        self._generation += 1
        if self._task is not None and self._waiting:
            self._task.cancel()

        await self._persist(
            self.persistence.update_battle_status(self.id, BattleStatus.PAUSED), "record pause"
        )
        await self.broadcast(PausedEvent(battle_id=self.id))
        log_deterministic(f"Battle {self.id} paused at turn {self.turn}")
        return True

    async def resume(self) -> bool:
        """Continue a paused battle from the last transcript entry.

        The last turn's content is re-issued as input to the next speaker; the
        last turn itself is not re-run. Returns False unless the battle was paused.
        """
        if self.status is not BattleStatus.PAUSED:
            return False

        self.status = BattleStatus.RUNNING
        self._generation += 1
        await self._persist(
            self.persistence.update_battle_status(self.id, BattleStatus.RUNNING), "record resume"
        )
        await self.broadcast(ResumedEvent(battle_id=self.id))
        log_deterministic(f"Battle {self.id} resumed at turn {self.turn}")

        # Input is resolved when the turn runs; an earlier resume may still be queued
        self._schedule(None, self.turn_delay)
        return True

    def _resume_input(self) -> str:
        if self.history:
            return self.history[-1].content
        return self._opening or self.opening_message()

    async def retry(self) -> bool:
        """Re-issue the input of a turn that failed. Returns False if nothing failed."""
        if self.status is not BattleStatus.RUNNING or not self._failed or self.busy:
            return False
        self._failed = False
        self._schedule(self._last_input or self._opening or self.opening_message(), delay=0)
        return True

    async def complete(self) -> None:
        """Finish the battle: record memories, save brains, announce the result."""
        if self.status is BattleStatus.COMPLETE:
            return

        self.status = BattleStatus.COMPLETE
        self.end_time = _now()

        participants = [agent.label for agent in self.agents]
        for agent in self.agents:
            agent.add_memory(
                "battle",
                {
                    "battleId": str(self.id),
                    "prompt": self.prompt,
                    "turns": self.turn,
                    "participants": participants,
                    "timestamp": self.end_time.isoformat(),
                },
            )
            await agent.save_brain()

        await self._persist(
            self.persistence.update_battle_status(
                self.id, BattleStatus.COMPLETE, end_time=self.end_time
            ),
            "record completion",
        )
        await self.broadcast(
            CompleteEvent(battle_id=self.id, turns=self.turn, duration=self.duration_ms)
        )
        log_success(
            f"Battle {self.id} complete. {self.turn} turns in {self.duration_ms / 1000:.1f}s"
        )

    # ------------------------------------------------------------------
    # Turn loop
    # ------------------------------------------------------------------

    async def run_turn(self, prompt: str) -> Optional[Turn]:
        """Run one turn with ``prompt`` as the incoming message.

        Returns the new Turn, or None when nothing was appended (not running,
        max reached, provider failure, or reply discarded after a pause).
        """
        if self.status is not BattleStatus.RUNNING:
            return None
        if self.turn >= self.max_turns:
            await self.complete()
            return None

        speaker_index = self.current_speaker
        agent = self.agents[speaker_index]
        generation = self._generation
        self._last_input = prompt
        messages = self.build_messages(speaker_index, prompt)

        log_llm(f"[{agent.label}] Turn {self.turn + 1}/{self.max_turns} via {agent.model}...")
        try:
            content = await self._respond(agent, messages)
        except ProviderError as exc:
            self._failed = True
            log_error(f"[{agent.label}] Turn {self.turn + 1} failed: {exc}")
            await self.broadcast(ErrorEvent(battle_id=self.id, error=str(exc)))
            return None

        if generation != self._generation or self.status is not BattleStatus.RUNNING:
            log_deterministic(f"[{agent.label}] Battle paused mid-turn; discarding reply")
            return None

        turn = Turn(
            turn=self.turn,
            speaker_index=speaker_index,
            speaker=agent.label,
            model=agent.model,
            content=content,
            timestamp=_now(),
        )
        self.history.append(turn)
        self.turn += 1
        self._failed = False

        await self._persist(self.persistence.save_turn(self.id, turn), f"save turn {turn.turn}")
        await self.broadcast(TurnEvent.from_turn(self.id, turn))
        print(colored(f"  [Turn {self.turn}] {agent.label}: {preview(content)}", Color.MAGENTA))

        self.current_speaker = (self.current_speaker + 1) % len(self.agents)

        if self.turn < self.max_turns and self.status is BattleStatus.RUNNING:
            self._schedule(content, self.turn_delay)
        elif self.turn >= self.max_turns and self.status is BattleStatus.RUNNING:
            await self.complete()
        return turn

    def build_messages(self, speaker_index: int, last_message: str) -> List[Message]:
        """Render the transcript from one agent's point of view.

        Turns spoken by ``speaker_index`` become ``self`` entries, all others
        ``other``. ``last_message`` is appended as an ``other`` entry, framed
        with the first-turn prefix (if this agent has not spoken yet) and the
        word limit (if configured).
        """
        messages = [
            Message(role="self" if entry.speaker_index == speaker_index else "other", content=entry.content)
            for entry in self.history
        ]

        agent = self.agents[speaker_index]
        outgoing = last_message
        if not any(entry.speaker_index == speaker_index for entry in self.history):
            outgoing = (
                first_turn_prefix(
                    self.prompt, agent.prompt, anonymous=self.anonymous or agent.anonymous
                )
                + outgoing
            )
        outgoing = word_limit_prefix(self.max_words) + outgoing

        messages.append(Message(role="other", content=outgoing))
        return messages

    def opening_message(self) -> str:
        return opening_message(
            prompt=self.prompt,
            directive=self.agents[0].prompt,
            participants=[agent.label for agent in self.agents[1:]],
            anonymous=self.anonymous,
            objective=self.objective,
        )

    async def _respond(self, agent: Agent, messages: List[Message]) -> str:
        attempts = 0
        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type(ProviderError),
            stop=stop_after_attempt(self.max_retries + 1),
            wait=wait_fixed(self.turn_delay),
            reraise=True,
        ):
            with attempt:
                attempts += 1
                if attempts > 1:
                    log_error(f"[{agent.label}] Retry {attempts - 1}/{self.max_retries}")
                return await agent.respond(messages)
        raise RuntimeError("Provider retry loop exited unexpectedly")

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def _schedule(self, prompt: Optional[str], delay: float) -> None:
        """Queue the next turn. A ``None`` prompt is read from the transcript at run time."""
        previous = self._task
        self._task = asyncio.create_task(
            self._delayed_turn(prompt, delay, previous, self._generation),
            name=f"battle-{self.id}-turn-{self.turn}",
        )

    async def _delayed_turn(
        self,
        prompt: Optional[str],
        delay: float,
        previous: Optional[asyncio.Task],
        generation: int,
    ) -> None:
        # Never overlap with the turn that queued us or one still finishing after a pause
        if previous is not None and not previous.done():
            await asyncio.wait([previous])
        if generation != self._generation:
            return

        if delay > 0:
            self._waiting = True
            try:
                await asyncio.sleep(delay)
            finally:
                self._waiting = False
            if generation != self._generation:
                return

        await self.run_turn(prompt if prompt is not None else self._resume_input())

    @property
    def busy(self) -> bool:
        """True while a turn is queued or in flight."""
        return self._task is not None and not self._task.done()

    async def join(self) -> None:
        """Wait until no turn is queued or in flight."""
        while self._task is not None and not self._task.done():
            await asyncio.wait([self._task])

    async def shutdown(self) -> None:
        """Cancel the queued or in-flight turn and wait for it to unwind.

        Used when the arena closes; the battle keeps its status and schedules
        nothing afterwards.
        """
        self._generation += 1
        task = self._task
        if task is None or task.done():
            return
        task.cancel()
        await asyncio.wait([task])

    async def _persist(self, operation: Awaitable[None], action: str) -> None:
        try:
            await operation
        except PersistenceError as exc:
            log_error(f"Battle {self.id}: could not {action}: {exc}")

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    @property
    def duration_ms(self) -> int:
        if self.start_time is None:
            return 0
        end = self.end_time or _now()
        return max(0, int((end - self.start_time).total_seconds() * 1000))

    def view(self) -> BattleView:
        return BattleView(
            id=self.id,
            agents=[agent.summary() for agent in self.agents],
            prompt=self.prompt,
            objective=self.objective,
            status=self.status,
            turn=self.turn,
            max_turns=self.max_turns,
            history=list(self.history),
        )

    def to_json(self) -> dict:
        return self.view().to_wire()

    def __repr__(self) -> str:
        return f"Battle(id={self.id}, status={self.status.value}, turn={self.turn}/{self.max_turns})"
