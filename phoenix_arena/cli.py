"""
Command line entry point.

    python -m phoenix_arena souls
    python -m phoenix_arena run --soul philosopher --soul skeptic --prompt "Is free will real?"
    python -m phoenix_arena serve --port 3000
"""

import argparse
import asyncio
import json
from pathlib import Path
from typing import List, Optional

import uvicorn

from .arena import Arena
from .config import Config
from .logging_utils import Color, colored, log_error, log_info
from .persistence import JsonPersistence
from .presets import PRESET_SOULS
from .schemas import AgentConfig, BattleConfig, BattleStatus, ProviderKind
from .server import create_app

SPEAKER_COLORS = [Color.CYAN, Color.YELLOW, Color.GREEN, Color.MAGENTA]


class ConsoleSpectator:
    """Prints battle events to the terminal as they arrive."""

    is_open = True

    def __init__(self) -> None:
        self.events: List[dict] = []

    async def send(self, data: str) -> None:
        event = json.loads(data)
        self.events.append(event)
        kind = event.get("type")

        if kind == "turn":
            color = SPEAKER_COLORS[event["speakerIndex"] % len(SPEAKER_COLORS)]
            print()
            print(colored(f"{event['speaker']} ({event['model']}) - turn {event['turn'] + 1}", color, bold=True))
            print(event["content"])
        elif kind == "battle_start":
            names = " vs ".join(agent["name"] for agent in event["agents"])
            print(colored(f"\n=== {names} ===", Color.BOLD))
            if event.get("prompt"):
                print(colored(f"Prompt: {event['prompt']}", Color.BLUE))
        elif kind == "error":
            print(colored(f"\nError: {event['error']}", Color.RED, bold=True))
        elif kind == "complete":
            print(colored(
                f"\n=== Complete: {event['turns']} turns in {event['duration'] / 1000:.1f}s ===",
                Color.GREEN,
                bold=True,
            ))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="phoenix_arena", description="Phoenix Arena: AI conversation battles")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("souls", help="List preset souls")

    run = subparsers.add_parser("run", help="Run a battle in the terminal")
    run.add_argument(
        "--soul",
        action="append",
        dest="souls",
        metavar="PRESET",
        help="Preset soul for the next agent (repeat 2-4 times)",
    )
    run.add_argument("--name", action="append", dest="names", default=[], help="Override agent names in order")
    run.add_argument("--prompt", help="Shared prompt shown to every agent")
    run.add_argument("--objective", help="Objective appended to the opening line")
    run.add_argument("--max-turns", type=int, default=Config.DEFAULT_MAX_TURNS, help="Turns before completing")
    run.add_argument("--delay", type=float, default=Config.DEFAULT_TURN_DELAY_SECONDS, help="Seconds between turns")
    run.add_argument("--max-words", type=int, help="Ask agents to stay under this many words")
    run.add_argument("--anonymous", action="store_true", help="Hide participant names")
    run.add_argument("--retries", type=int, default=0, help="Extra attempts after a provider failure")
    run.add_argument(
        "--provider",
        choices=[kind.value for kind in ProviderKind],
        default=Config.DEFAULT_PROVIDER,
        help="Provider for every agent",
    )
    run.add_argument("--model", help="Model for every agent (provider default otherwise)")
    run.add_argument("--archive-dir", type=Path, default=Config.ARCHIVE_DIR, help="Where battles are recorded")

    serve = subparsers.add_parser("serve", help="Start the HTTP and websocket server")
    serve.add_argument("--host", default=Config.HOST)
    serve.add_argument("--port", type=int, default=Config.PORT)

    return parser


def build_battle_config(args: argparse.Namespace) -> BattleConfig:
    """Translate ``run`` arguments into a validated BattleConfig."""
    souls = args.souls or ["philosopher", "skeptic"]
    agents = []
    for index, soul in enumerate(souls):
        agents.append(
            AgentConfig(
                name=args.names[index] if index < len(args.names) else None,
                soul_preset=soul,
                provider=ProviderKind(args.provider),
                model=args.model,
            )
        )

    return BattleConfig(
        agents=agents,
        prompt=args.prompt,
        objective=args.objective,
        max_turns=args.max_turns,
        turn_delay=args.delay,
        max_words=args.max_words,
        anonymous=args.anonymous,
        max_retries=args.retries,
    )


async def run_battle(args: argparse.Namespace) -> int:
    """Run one battle to completion with console output. Returns an exit code."""
    config = build_battle_config(args)
    Config.validate(args.provider)

    arena = Arena(JsonPersistence(args.archive_dir))
    await arena.initialize()
    await arena.add_spectator(ConsoleSpectator())
    try:
        battle = await arena.create_battle(config)
        await battle.start()
        await battle.join()
    finally:
        await arena.close()

    if battle.status is not BattleStatus.COMPLETE:
        log_error(f"Battle stopped at turn {battle.turn}/{battle.max_turns}")
        return 1
    log_info(f"Recorded in {args.archive_dir / str(battle.id)}")
    return 0


def list_souls() -> None:
    for key, preset in PRESET_SOULS.items():
        print(colored(f"{key:<12}", Color.CYAN, bold=True) + preset.soul)


def serve(args: argparse.Namespace) -> None:
    uvicorn.run(create_app(), host=args.host, port=args.port)


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    if args.command == "souls":
        list_souls()
        return 0
    if args.command == "serve":
        serve(args)
        return 0

    try:
        return asyncio.run(run_battle(args))
    except (KeyError, ValueError) as exc:
        log_error(str(exc).strip("'\""))
        return 2
