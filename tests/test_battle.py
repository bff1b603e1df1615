"""Tests covering the battle turn loop with scripted providers."""

import asyncio
import json
from datetime import datetime, timezone

import pytest

from phoenix_arena.agent import Agent
from phoenix_arena.battle import Battle
from phoenix_arena.brain import BrainStore
from phoenix_arena.events import CompleteEvent, ErrorEvent, PausedEvent, ResumedEvent, TurnEvent
from phoenix_arena.persistence import InMemoryPersistence, PersistenceError
from phoenix_arena.providers import Provider, ProviderError
from phoenix_arena.schemas import BattleStatus, Brain, ProviderKind, Turn


class ScriptedProvider(Provider):
    """Replies "<name> reply <n>" and records every call.

    ``fail_on`` lists 1-based call numbers that raise ProviderError.
    ``gate``, when given, must be set before any call returns.
    """

    kind = ProviderKind.OLLAMA

    def __init__(self, name: str, *, fail_on=(), gate: asyncio.Event | None = None):
        super().__init__(f"{name.lower()}-model")
        self.name = name
        self.fail_on = set(fail_on)
        self.gate = gate
        self.calls = []
        self.in_flight = 0
        self.max_in_flight = 0

    @classmethod
    def default_model(cls) -> str:
        return "scripted"

    async def chat(self, messages, system_prompt=None) -> str:
        self.calls.append((list(messages), system_prompt))
        number = len(self.calls)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.gate is not None:
                await self.gate.wait()
            if number in self.fail_on:
                raise ProviderError(self.label, f"scripted failure on call {number}")
            return f"{self.name} reply {number}"
        finally:
            self.in_flight -= 1


class EventRecorder:
    def __init__(self):
        self.events = []

    async def __call__(self, event) -> None:
        self.events.append(event)

    def of_type(self, event_type):
        return [event for event in self.events if isinstance(event, event_type)]


async def wait_until(predicate, timeout: float = 2.0) -> None:
    async def _poll():
        while not predicate():
            await asyncio.sleep(0)

    await asyncio.wait_for(_poll(), timeout)


def make_battle(providers, **kwargs):
    agents = [Agent(provider.name, provider) for provider in providers]
    recorder = EventRecorder()
    kwargs.setdefault("turn_delay", 0)
    battle = Battle(agents, broadcast=recorder, **kwargs)
    return battle, recorder


@pytest.mark.asyncio
async def test_two_agents_alternate_for_max_turns():
    alice, bob = ScriptedProvider("Alice"), ScriptedProvider("Bob")
    persistence = InMemoryPersistence()
    battle, recorder = make_battle([alice, bob], prompt="Discuss X.", max_turns=4, persistence=persistence)

    await battle.initialize()
    await battle.start()
    await battle.join()

    assert battle.status is BattleStatus.COMPLETE
    assert battle.turn == 4
    assert [turn.speaker_index for turn in battle.history] == [0, 1, 0, 1]
    assert [turn.turn for turn in battle.history] == [0, 1, 2, 3]
    assert [turn.speaker for turn in battle.history] == ["Alice", "Bob", "Alice", "Bob"]

    # Each agent's first message carries the shared context; later ones do not
    alice_first = alice.calls[0][0][-1].content
    bob_first = bob.calls[0][0][-1].content
    assert alice_first.startswith("[Context: Discuss X.]")
    assert bob_first == "[Context: Discuss X.]\n\nAlice reply 1"
    assert alice.calls[1][0][-1].content == "Bob reply 1"

    assert [event.turn for event in recorder.of_type(TurnEvent)] == [0, 1, 2, 3]
    assert len(persistence.turns[battle.id]) == 4
    assert persistence.battles[battle.id].status is BattleStatus.COMPLETE


@pytest.mark.asyncio
async def test_opening_names_other_participants_unless_anonymous():
    battle, _ = make_battle([ScriptedProvider("Alice"), ScriptedProvider("Bob")])
    anonymous, _ = make_battle([ScriptedProvider("Alice"), ScriptedProvider("Bob")], anonymous=True)

    assert battle.opening_message() == "Begin.\n\nYou are starting the conversation. Other participants: Bob"
    assert anonymous.opening_message() == "Begin."


@pytest.mark.asyncio
async def test_zero_max_turns_completes_without_turns():
    alice, bob = ScriptedProvider("Alice"), ScriptedProvider("Bob")
    battle, recorder = make_battle([alice, bob], max_turns=0)

    await battle.initialize()
    await battle.start()
    await battle.join()

    assert battle.status is BattleStatus.COMPLETE
    assert battle.history == []
    assert alice.calls == [] and bob.calls == []
    assert recorder.of_type(CompleteEvent)[0].turns == 0


@pytest.mark.asyncio
async def test_provider_failure_broadcasts_error_and_stops():
    alice, bob = ScriptedProvider("Alice"), ScriptedProvider("Bob", fail_on={1})
    battle, recorder = make_battle([alice, bob], max_turns=4)

    await battle.initialize()
    await battle.start()
    await battle.join()

    errors = recorder.of_type(ErrorEvent)
    assert len(errors) == 1
    assert errors[0].battle_id == battle.id
    assert "scripted failure" in errors[0].error
    assert battle.turn == 1
    assert len(battle.history) == 1
    assert battle.status is BattleStatus.RUNNING
    assert not battle.busy


@pytest.mark.asyncio
async def test_pause_then_resume_recovers_after_failure():
    alice, bob = ScriptedProvider("Alice"), ScriptedProvider("Bob", fail_on={1})
    battle, _ = make_battle([alice, bob], max_turns=2)
    await battle.initialize()
    await battle.start()
    await battle.join()

    assert await battle.pause()
    assert await battle.resume()
    await battle.join()

    assert battle.status is BattleStatus.COMPLETE
    assert [turn.content for turn in battle.history] == ["Alice reply 1", "Bob reply 2"]
    assert bob.calls[1][0][-1].content.endswith("Alice reply 1")


@pytest.mark.asyncio
async def test_retry_reissues_failed_input():
    alice, bob = ScriptedProvider("Alice"), ScriptedProvider("Bob", fail_on={1})
    battle, _ = make_battle([alice, bob], max_turns=2)
    await battle.initialize()
    await battle.start()
    await battle.join()

    assert await battle.retry()
    await battle.join()

    assert battle.turn == 2
    assert bob.calls[0][0] == bob.calls[1][0]
    assert await battle.retry() is False


@pytest.mark.asyncio
async def test_max_retries_absorbs_transient_failure():
    alice, bob = ScriptedProvider("Alice", fail_on={1}), ScriptedProvider("Bob")
    battle, recorder = make_battle([alice, bob], max_turns=2, max_retries=1)

    await battle.initialize()
    await battle.start()
    await battle.join()

    assert battle.status is BattleStatus.COMPLETE
    assert len(alice.calls) == 2
    assert recorder.of_type(ErrorEvent) == []


@pytest.mark.asyncio
async def test_pause_freezes_turn_counter():
    alice, bob = ScriptedProvider("Alice"), ScriptedProvider("Bob")
    battle, recorder = make_battle([alice, bob], max_turns=4, turn_delay=60)

    await battle.initialize()
    await battle.start()
    await wait_until(lambda: battle.turn == 1 and battle._waiting)

    assert await battle.pause()
    await battle.join()
    await asyncio.sleep(0)

    assert battle.status is BattleStatus.PAUSED
    assert battle.turn == 1
    assert bob.calls == []
    assert len(recorder.of_type(PausedEvent)) == 1
    assert await battle.pause() is False


@pytest.mark.asyncio
async def test_resume_reissues_last_turn_without_duplicate():
    alice, bob = ScriptedProvider("Alice"), ScriptedProvider("Bob")
    battle, recorder = make_battle([alice, bob], max_turns=2, turn_delay=60)
    await battle.initialize()
    await battle.start()
    await wait_until(lambda: battle.turn == 1 and battle._waiting)
    await battle.pause()

    battle.turn_delay = 0
    assert await battle.resume()
    await battle.join()

    assert battle.status is BattleStatus.COMPLETE
    assert [turn.turn for turn in battle.history] == [0, 1]
    assert [turn.speaker_index for turn in battle.history] == [0, 1]
    assert bob.calls[0][0][-1].content.endswith("Alice reply 1")
    assert len(alice.calls) == 1
    assert len(recorder.of_type(ResumedEvent)) == 1


@pytest.mark.asyncio
async def test_reply_arriving_after_pause_is_discarded():
    gate = asyncio.Event()
    alice, bob = ScriptedProvider("Alice", gate=gate), ScriptedProvider("Bob")
    battle, recorder = make_battle([alice, bob], max_turns=1)
    await battle.initialize()
    await battle.start()
    await wait_until(lambda: len(alice.calls) == 1)

    await battle.pause()
    gate.set()
    await battle.join()

    assert battle.history == []
    assert battle.turn == 0
    assert recorder.of_type(TurnEvent) == []

    # Resuming with an empty transcript re-issues the opening line
    await battle.resume()
    await battle.join()

    assert battle.status is BattleStatus.COMPLETE
    assert [turn.content for turn in battle.history] == ["Alice reply 2"]
    assert alice.calls[1][0] == alice.calls[0][0]


@pytest.mark.asyncio
async def test_resume_during_in_flight_call_never_overlaps():
    gate = asyncio.Event()
    alice, bob = ScriptedProvider("Alice", gate=gate), ScriptedProvider("Bob")
    battle, _ = make_battle([alice, bob], max_turns=1)
    await battle.initialize()
    await battle.start()
    await wait_until(lambda: len(alice.calls) == 1)

    await battle.pause()
    await battle.resume()
    await asyncio.sleep(0)
    assert len(alice.calls) == 1

    gate.set()
    await battle.join()

    assert alice.max_in_flight == 1
    assert [turn.content for turn in battle.history] == ["Alice reply 2"]
    assert battle.status is BattleStatus.COMPLETE


@pytest.mark.asyncio
async def test_repeated_pause_resume_during_in_flight_call_keeps_one_chain():
    gate = asyncio.Event()
    alice, bob = ScriptedProvider("Alice", gate=gate), ScriptedProvider("Bob")
    battle, _ = make_battle([alice, bob], max_turns=4)
    await battle.initialize()
    await battle.start()
    await wait_until(lambda: len(alice.calls) == 1)

    await battle.pause()
    await battle.resume()
    await battle.pause()
    await battle.resume()
    gate.set()
    await battle.join()

    assert [turn.content for turn in battle.history] == [
        "Alice reply 2",
        "Bob reply 1",
        "Alice reply 3",
        "Bob reply 2",
    ]
    assert [turn.speaker_index for turn in battle.history] == [0, 1, 0, 1]
    # Every turn answers the one before it
    assert bob.calls[0][0][-1].content.endswith("Alice reply 2")
    assert alice.calls[2][0][-1].content.endswith("Bob reply 1")
    assert bob.calls[1][0][-1].content.endswith("Alice reply 3")
    assert len(alice.calls) == 3
    assert len(bob.calls) == 2
    assert alice.max_in_flight == 1
    assert battle.status is BattleStatus.COMPLETE


@pytest.mark.asyncio
async def test_shutdown_cancels_in_flight_turn():
    gate = asyncio.Event()
    alice, bob = ScriptedProvider("Alice", gate=gate), ScriptedProvider("Bob")
    battle, recorder = make_battle([alice, bob], max_turns=4)
    await battle.initialize()
    await battle.start()
    await wait_until(lambda: len(alice.calls) == 1)

    await battle.shutdown()

    assert not battle.busy
    assert battle.history == []
    assert recorder.of_type(TurnEvent) == []
    assert bob.calls == []


@pytest.mark.asyncio
async def test_complete_records_one_memory_per_agent_and_saves_brains(tmp_path):
    store = BrainStore(tmp_path)
    agents = [
        Agent("Alice", ScriptedProvider("Alice"), brain="alice.json", brain_store=store),
        Agent("Bob", ScriptedProvider("Bob"), brain=Brain()),
    ]
    recorder = EventRecorder()
    battle = Battle(agents, prompt="Discuss X.", max_turns=6, turn_delay=0, broadcast=recorder)

    await battle.initialize()
    await battle.start()
    await battle.join()

    for agent in agents:
        assert len(agent.brain.conversation_memories) == 1
        memory = agent.brain.conversation_memories[0]
        assert memory.key == "battle"
        assert memory.value["battleId"] == str(battle.id)
        assert memory.value["turns"] == 6
        assert memory.value["participants"] == ["Alice", "Bob"]
        assert memory.value["prompt"] == "Discuss X."

    saved = json.loads((tmp_path / "alice.json").read_text("utf-8"))
    assert len(saved["conversationMemories"]) == 1

    complete = recorder.of_type(CompleteEvent)
    assert len(complete) == 1
    assert complete[0].turns == 6
    assert complete[0].duration >= 0

    # Completing twice changes nothing
    await battle.complete()
    assert len(agents[0].brain.conversation_memories) == 1
    assert len(recorder.of_type(CompleteEvent)) == 1


@pytest.mark.asyncio
async def test_complete_is_terminal():
    battle, _ = make_battle([ScriptedProvider("Alice"), ScriptedProvider("Bob")], max_turns=0)
    await battle.initialize()
    await battle.start()
    await battle.join()

    assert await battle.pause() is False
    assert await battle.resume() is False
    assert await battle.run_turn("anything") is None
    with pytest.raises(RuntimeError):
        await battle.start()


@pytest.mark.asyncio
async def test_persistence_failures_do_not_stop_the_battle():
    class FailingPersistence(InMemoryPersistence):
        async def save_turn(self, battle_id, turn):
            raise PersistenceError("disk full")

    battle, _ = make_battle(
        [ScriptedProvider("Alice"), ScriptedProvider("Bob")], max_turns=3, persistence=FailingPersistence()
    )
    await battle.initialize()
    await battle.start()
    await battle.join()

    assert battle.status is BattleStatus.COMPLETE
    assert battle.turn == 3


def test_build_messages_renders_per_agent_view():
    battle, _ = make_battle(
        [ScriptedProvider("Alice"), ScriptedProvider("Bob"), ScriptedProvider("Cara")],
        prompt="Discuss X.",
        max_words=50,
    )
    now = datetime.now(timezone.utc)
    for index, speaker in enumerate(["Alice", "Bob"]):
        battle.history.append(
            Turn(turn=index, speaker_index=index, speaker=speaker, model="m", content=f"{speaker} said", timestamp=now)
        )

    alice_view = battle.build_messages(0, "Bob said")
    cara_view = battle.build_messages(2, "Bob said")

    assert [m.role for m in alice_view] == ["self", "other", "other"]
    assert alice_view[-1].content == "[Respond in 50 words or fewer.]\n\nBob said"
    assert [m.role for m in cara_view] == ["other", "other", "other"]
    assert cara_view[-1].content == "[Respond in 50 words or fewer.]\n\n[Context: Discuss X.]\n\nBob said"


def test_first_turn_directive_respects_agent_anonymity():
    alice = Agent("Alice", ScriptedProvider("Alice"), prompt="Defend X.", anonymous=True)
    bob = Agent("Bob", ScriptedProvider("Bob"), prompt="Attack X.")
    battle = Battle([alice, bob], turn_delay=0)

    assert battle.build_messages(0, "Begin.")[-1].content == "Defend X.\n\nBegin."
    assert battle.build_messages(1, "hi")[-1].content == "[Your directive: Attack X.]\n\nhi"
