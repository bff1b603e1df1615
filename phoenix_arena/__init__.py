"""
Phoenix Arena - turn-based conversation battles between LLM agents.

Two to four agents, each with a persona and an optional persistent brain,
take turns replying to one another while spectators watch live.

Everything is injected: the Arena owns its battles and spectators, battles
take their persistence backend and broadcast function explicitly, agents
take their provider. Config values are only ever defaults.
"""

__version__ = "0.1.0"

# Scheduler and registry
from .arena import Arena, Spectator
from .battle import Battle
from .agent import Agent

# Providers
from .providers import (
    Provider,
    ProviderError,
    HostedProvider,
    LocalProvider,
    create_provider,
)

# Storage
from .brain import BrainPathError, BrainStore, MemoryLoadError
from .persistence import (
    PersistenceStrategy,
    PersistenceError,
    InMemoryPersistence,
    JsonPersistence,
    PostgresPersistence,
)

# Schemas and events
from .schemas import (
    AgentConfig,
    AgentSummary,
    BattleConfig,
    BattleHistory,
    BattleRecord,
    BattleStatus,
    BattleView,
    Brain,
    KnowledgeEntry,
    MemoryEntry,
    Message,
    ProviderKind,
    Turn,
)
from .events import (
    ArenaEvent,
    StateEvent,
    BattleStartEvent,
    TurnEvent,
    PausedEvent,
    ResumedEvent,
    CompleteEvent,
    ErrorEvent,
)
from .presets import PRESET_SOULS, Preset, get_preset
from .config import Config

__all__ = [
    "Arena",
    "Spectator",
    "Battle",
    "Agent",
    "Provider",
    "ProviderError",
    "HostedProvider",
    "LocalProvider",
    "create_provider",
    "BrainStore",
    "MemoryLoadError",
    "BrainPathError",
    "PersistenceStrategy",
    "PersistenceError",
    "InMemoryPersistence",
    "JsonPersistence",
    "PostgresPersistence",
    "AgentConfig",
    "AgentSummary",
    "BattleConfig",
    "BattleHistory",
    "BattleRecord",
    "BattleStatus",
    "BattleView",
    "Brain",
    "KnowledgeEntry",
    "MemoryEntry",
    "Message",
    "ProviderKind",
    "Turn",
    "ArenaEvent",
    "StateEvent",
    "BattleStartEvent",
    "TurnEvent",
    "PausedEvent",
    "ResumedEvent",
    "CompleteEvent",
    "ErrorEvent",
    "PRESET_SOULS",
    "Preset",
    "get_preset",
    "Config",
]
