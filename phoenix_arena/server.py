"""
HTTP and websocket surface for Phoenix Arena.

- REST routes under ``/api`` create, inspect and steer battles
- ``/ws`` registers the connection as a spectator of every battle
- ``/health`` reports arena counters

The app wraps one explicitly constructed Arena, stored on ``app.state``.
"""

from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Path, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from starlette.websockets import WebSocketState

from .arena import Arena
from .brain import BRAIN_NAME_PATTERN, BrainPathError
from .logging_utils import log_error
from .persistence import PersistenceError, persistence_from_config
from .presets import PRESET_SOULS
from .schemas import BattleConfig, BattleHistory, BattleRecord, Brain


class WebSocketSpectator:
    """Adapts a FastAPI websocket to the arena's Spectator protocol."""

    def __init__(self, websocket: WebSocket) -> None:
        self.websocket = websocket

    @property
    def is_open(self) -> bool:
        return self.websocket.application_state is WebSocketState.CONNECTED

    async def send(self, data: str) -> None:
        await self.websocket.send_text(data)


def get_arena(request: Request) -> Arena:
    return request.app.state.arena


router = APIRouter(prefix="/api", tags=["Arena"])


@router.get("/souls")
async def list_souls() -> List[Dict[str, Any]]:
    """Available preset souls."""
    return [
        {"id": key, "name": preset.name, "hasBrain": preset.brain is not None}
        for key, preset in PRESET_SOULS.items()
    ]


@router.get("/souls/{key}")
async def get_soul(key: str) -> Dict[str, Any]:
    preset = PRESET_SOULS.get(key)
    if preset is None:
        raise HTTPException(status_code=404, detail="Soul not found")
    return {"id": key, "name": preset.name, "soul": preset.soul, "brain": preset.brain}


@router.post("/battle")
async def create_battle(config: BattleConfig, arena: Arena = Depends(get_arena)) -> Dict[str, Any]:
    """Create a battle and start it; turns run in the background."""
    try:
        battle = await arena.create_battle(config)
    except (KeyError, ValueError) as exc:
        raise HTTPException(status_code=422, detail=str(exc).strip("'\"")) from exc

    await battle.start()
    return {
        "success": True,
        "battleId": str(battle.id),
        "agents": [agent.label for agent in battle.agents],
    }


@router.get("/battle/{battle_id}")
async def get_battle(battle_id: UUID, arena: Arena = Depends(get_arena)) -> Dict[str, Any]:
    """Live view of a battle, falling back to the archive."""
    battle = arena.get_battle(battle_id)
    if battle is not None:
        return battle.to_json()

    history = await arena.get_battle_history(battle_id)
    if history is None:
        raise HTTPException(status_code=404, detail="Battle not found")
    return history.to_wire()


@router.post("/battle/{battle_id}/pause")
async def pause_battle(battle_id: UUID, arena: Arena = Depends(get_arena)) -> Dict[str, Any]:
    battle = arena.get_battle(battle_id)
    if battle is None:
        raise HTTPException(status_code=404, detail="Battle not found")
    changed = await battle.pause()
    return {"success": True, "changed": changed, "status": battle.status.value}


@router.post("/battle/{battle_id}/resume")
async def resume_battle(battle_id: UUID, arena: Arena = Depends(get_arena)) -> Dict[str, Any]:
    battle = arena.get_battle(battle_id)
    if battle is None:
        raise HTTPException(status_code=404, detail="Battle not found")
    changed = await battle.resume()
    return {"success": True, "changed": changed, "status": battle.status.value}


@router.post("/brain/{name}")
async def upload_brain(
    brain: Brain,
    name: str = Path(..., pattern=BRAIN_NAME_PATTERN),
    arena: Arena = Depends(get_arena),
) -> Dict[str, Any]:
    """Store a brain document as ``<name>.json`` in the arena's brain directory."""
    try:
        path = await arena.brain_store.save(arena.brain_store.path_for(name), brain)
    except BrainPathError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except PersistenceError as exc:
        log_error(str(exc))
        raise HTTPException(status_code=500, detail="Could not save brain") from exc
    return {"success": True, "path": str(path)}


@router.get("/battles")
async def list_battles(arena: Arena = Depends(get_arena)) -> List[Dict[str, Any]]:
    return arena.list_battles()


@router.get("/archive")
async def get_archive(
    limit: int = Query(50, ge=1, le=500), arena: Arena = Depends(get_arena)
) -> List[Dict[str, Any]]:
    records: List[BattleRecord] = await arena.get_archive(limit=limit)
    return [record.to_wire() for record in records]


@router.get("/archive/{battle_id}")
async def get_archived_battle(battle_id: UUID, arena: Arena = Depends(get_arena)) -> Dict[str, Any]:
    history: Optional[BattleHistory] = await arena.get_battle_history(battle_id)
    if history is None:
        raise HTTPException(status_code=404, detail="Battle not found")
    return history.to_wire()


def create_app(arena: Optional[Arena] = None) -> FastAPI:
    """Build the FastAPI app around ``arena`` (a configured one by default)."""
    arena = arena or Arena(persistence_from_config())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await arena.initialize()
        yield
        await arena.close()

    app = FastAPI(
        title="Phoenix Arena",
        description="Multi-agent conversation battles with live spectators",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.arena = arena

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(router)

    @app.get("/health", tags=["Health"])
    async def health() -> Dict[str, Any]:
        return arena.health()

    @app.websocket("/ws")
    async def spectate(websocket: WebSocket) -> None:
        """Stream every battle event; incoming client messages are ignored."""
        await websocket.accept()
        spectator = WebSocketSpectator(websocket)
        await arena.add_spectator(spectator)
        try:
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            pass
        except Exception as exc:
            log_error(f"WebSocket error: {exc}")
        finally:
            arena.remove_spectator(spectator)

    return app
