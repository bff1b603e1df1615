"""Tests for the arena registry and spectator fan-out."""

import asyncio
import json
from uuid import uuid4

import pytest

from phoenix_arena.arena import Arena, Spectator
from phoenix_arena.brain import BrainPathError, BrainStore
from phoenix_arena.events import PausedEvent
from phoenix_arena.persistence import InMemoryPersistence, PersistenceError
from phoenix_arena.providers import LocalProvider, Provider
from phoenix_arena.schemas import BattleStatus, ProviderKind


class FakeSpectator:
    def __init__(self, *, open_: bool = True, fail: bool = False):
        self.open = open_
        self.fail = fail
        self.sent = []

    @property
    def is_open(self) -> bool:
        return self.open

    async def send(self, data: str) -> None:
        if self.fail:
            raise ConnectionError("socket reset")
        self.sent.append(json.loads(data))


class EchoProvider(Provider):
    kind = ProviderKind.OLLAMA

    @classmethod
    def default_model(cls) -> str:
        return "echo"

    async def chat(self, messages, system_prompt=None) -> str:
        return f"echo {len(messages)}"


def battle_config(**overrides):
    config = {
        "agents": [
            {"soulPreset": "philosopher", "provider": "ollama"},
            {"soulPreset": "skeptic", "provider": "ollama", "displayName": "Doubter"},
        ],
        "prompt": "Is time real?",
        "maxTurns": 2,
        "turnDelay": 0,
    }
    config.update(overrides)
    return config


async def run_to_completion(arena: Arena, **overrides):
    battle = await arena.create_battle(battle_config(**overrides))
    for agent in battle.agents:
        agent.provider = EchoProvider("echo")
    await battle.start()
    await battle.join()
    return battle


def test_fake_spectator_satisfies_protocol():
    assert isinstance(FakeSpectator(), Spectator)


@pytest.mark.asyncio
async def test_create_battle_builds_agents_from_presets():
    arena = Arena()
    battle = await arena.create_battle(battle_config())

    assert arena.get_battle(battle.id) is battle
    assert [agent.label for agent in battle.agents] == ["Philosopher", "Doubter"]
    assert isinstance(battle.agents[0].provider, LocalProvider)
    assert battle.agents[1].soul.startswith("You are a hardcore skeptic")
    assert battle.status is BattleStatus.PENDING
    assert arena.persistence.battles[battle.id].status is BattleStatus.PENDING


@pytest.mark.asyncio
async def test_create_battle_rejects_single_agent():
    arena = Arena()
    config = battle_config(agents=[{"provider": "ollama"}])

    with pytest.raises(ValueError):
        await arena.create_battle(config)
    assert arena.battles == {}


@pytest.mark.asyncio
async def test_spectator_receives_snapshot_on_join():
    arena = Arena()
    battle = await arena.create_battle(battle_config())
    spectator = FakeSpectator()

    await arena.add_spectator(spectator)

    snapshot = spectator.sent[0]
    assert snapshot["type"] == "state"
    assert snapshot["battles"][0]["id"] == str(battle.id)
    assert snapshot["battles"][0]["maxTurns"] == 2
    assert snapshot["battles"][0]["agents"][1]["name"] == "Doubter"


@pytest.mark.asyncio
async def test_broadcast_skips_closed_and_drops_failing_spectators():
    arena = Arena()
    live, closed, broken = FakeSpectator(), FakeSpectator(open_=False), FakeSpectator(fail=True)
    arena.spectators.update({live, closed, broken})
    battle_id = uuid4()

    await arena.broadcast(PausedEvent(battle_id=battle_id))

    assert live.sent == [{"type": "paused", "battleId": str(battle_id)}]
    assert closed.sent == []
    assert broken not in arena.spectators
    assert closed in arena.spectators


@pytest.mark.asyncio
async def test_battle_events_reach_spectators():
    arena = Arena()
    spectator = FakeSpectator()
    await arena.add_spectator(spectator)

    battle = await run_to_completion(arena)

    types = [event["type"] for event in spectator.sent]
    assert types == ["state", "battle_start", "turn", "turn", "complete"]
    turn = spectator.sent[2]
    assert turn["battleId"] == str(battle.id)
    assert turn["speakerIndex"] == 0
    assert turn["speaker"] == "Philosopher"
    assert spectator.sent[-1]["turns"] == 2


@pytest.mark.asyncio
async def test_archive_and_history_come_from_persistence():
    arena = Arena(InMemoryPersistence())
    battle = await run_to_completion(arena)
    await arena.create_battle(battle_config())  # still pending, not archived

    archive = await arena.get_archive()
    history = await arena.get_battle_history(battle.id)

    assert [record.id for record in archive] == [battle.id]
    assert history.status is BattleStatus.COMPLETE
    assert [turn.turn for turn in history.turns] == [0, 1]
    assert len(arena.list_battles()) == 2


@pytest.mark.asyncio
async def test_archive_read_failure_returns_empty():
    class BrokenPersistence(InMemoryPersistence):
        async def list_battles(self, status=BattleStatus.COMPLETE, limit=50):
            raise PersistenceError("database unavailable")

    arena = Arena(BrokenPersistence())

    assert await arena.get_archive() == []


@pytest.mark.asyncio
async def test_health_reports_counts():
    arena = Arena()
    await arena.initialize()
    await arena.create_battle(battle_config())
    await arena.add_spectator(FakeSpectator())

    assert arena.health() == {
        "status": "ok",
        "activeBattles": 1,
        "spectators": 1,
        "persistence": "memory",
    }
    await arena.close()


class StalledProvider(Provider):
    """Never answers until cancelled."""

    kind = ProviderKind.OLLAMA

    def __init__(self, model: str):
        super().__init__(model)
        self.started = asyncio.Event()

    @classmethod
    def default_model(cls) -> str:
        return "stalled"

    async def chat(self, messages, system_prompt=None) -> str:
        self.started.set()
        await asyncio.Event().wait()
        return "never"


@pytest.mark.asyncio
async def test_close_cancels_turn_in_flight():
    persistence = InMemoryPersistence()
    arena = Arena(persistence)
    await arena.initialize()
    battle = await arena.create_battle(battle_config())
    stalled = StalledProvider("stalled")
    battle.agents[0].provider = stalled
    await battle.start()
    await asyncio.wait_for(stalled.started.wait(), 2.0)

    await arena.close()

    assert not battle.busy
    assert battle.history == []
    assert persistence.turns.get(battle.id, []) == []


@pytest.mark.asyncio
async def test_brains_are_confined_to_the_brain_directory(tmp_path):
    outside = tmp_path / "notes.txt"
    outside.write_text("precious user data", "utf-8")
    arena = Arena(brain_store=BrainStore(tmp_path / "brains"))

    for location in (str(outside), "../notes.txt"):
        config = battle_config()
        config["agents"][0]["brain"] = location
        with pytest.raises(BrainPathError):
            await arena.create_battle(config)

    assert arena.battles == {}
    assert outside.read_text("utf-8") == "precious user data"


@pytest.mark.asyncio
async def test_preset_brain_lives_in_the_brain_directory(tmp_path):
    arena = Arena(brain_store=BrainStore(tmp_path))
    config = battle_config()
    config["agents"][0] = {"soulPreset": "uni", "provider": "ollama"}

    battle = await run_to_completion(arena, agents=config["agents"])

    saved = json.loads((tmp_path / "uni.json").read_text("utf-8"))
    assert battle.agents[0].label == "UNI"
    assert saved["conversationMemories"][0]["key"] == "battle"
