"""
Example: Two-agent debate with persistent brains
================================================

WHAT THIS SHOWS:
- Building agents directly (no HTTP server)
- A battle driven to completion with a console spectator
- Brains written back to disk, so a second run remembers the first

RUN (offline, scripted replies):
    python examples/debate.py

RUN (self-hosted model via Ollama):
    python examples/debate.py --llm --model llama3
"""

import argparse
import asyncio
import itertools
from pathlib import Path

from phoenix_arena import Agent, Arena, Battle, BrainStore, JsonPersistence, LocalProvider, Provider, ProviderKind
from phoenix_arena.cli import ConsoleSpectator
from phoenix_arena.presets import get_preset

DATA_DIR = Path(__file__).parent / "data"


class ScriptedProvider(Provider):
    """Cycles through canned lines so the example runs without any model."""

    kind = ProviderKind.OLLAMA

    def __init__(self, lines):
        super().__init__("scripted")
        self._lines = itertools.cycle(lines)

    @classmethod
    def default_model(cls) -> str:
        return "scripted"

    async def chat(self, messages, system_prompt=None) -> str:
        return next(self._lines)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Philosopher vs Skeptic")
    parser.add_argument("--llm", action="store_true", help="Use a local Ollama model")
    parser.add_argument("--model", default="llama3", help="Ollama model name")
    parser.add_argument("--turns", type=int, default=6, help="Number of turns")
    return parser.parse_args()


def build_provider(args: argparse.Namespace, lines) -> Provider:
    if args.llm:
        return LocalProvider(args.model)
    return ScriptedProvider(lines)


async def main(args: argparse.Namespace) -> None:
    store = BrainStore(DATA_DIR / "brains")
    arena = Arena(JsonPersistence(DATA_DIR / "battles"), brain_store=store)
    await arena.initialize()
    await arena.add_spectator(ConsoleSpectator())

    philosopher, skeptic = get_preset("philosopher"), get_preset("skeptic")
    agents = [
        Agent(
            philosopher.name,
            build_provider(args, ["What if the self is only a story we tell?", "Then who is telling it?"]),
            soul=philosopher.soul,
            brain="philosopher.json",
            brain_store=store,
        ),
        Agent(
            skeptic.name,
            build_provider(args, ["Show me the evidence for a self at all.", "A question is not an argument."]),
            soul=skeptic.soul,
            brain="skeptic.json",
            brain_store=store,
        ),
    ]

    # Battles can be wired by hand; Arena.create_battle does the same from a config
    battle = Battle(
        agents,
        prompt="Does the self exist?",
        max_turns=args.turns,
        turn_delay=0 if not args.llm else 1.0,
        max_words=60,
        persistence=arena.persistence,
        broadcast=arena.broadcast,
    )
    arena.battles[battle.id] = battle

    await battle.initialize()
    await battle.start()
    await battle.join()
    await arena.close()

    for agent in agents:
        print(f"{agent.label}: {len(agent.brain.conversation_memories)} remembered battles")


if __name__ == "__main__":
    asyncio.run(main(parse_args()))
