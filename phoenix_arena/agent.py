"""
Conversational agent: identity, persona, memory and a bound provider.

An Agent owns its Brain exclusively. The brain is loaded once (``load_brain``),
grows only through ``add_memory`` and is written back once (``save_brain``)
when the battle that uses it completes.
"""

from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional, Sequence, Union
from uuid import uuid4

from .brain import BrainStore, MemoryLoadError
from .logging_utils import log_deterministic, log_error, log_success
from .persistence import PersistenceError
from .presets import get_preset
from .prompts import compose_system_prompt
from .providers import Provider, create_provider
from .schemas import AgentConfig, AgentSummary, Brain, MemoryEntry, Message


class Agent:
    """One participant in a battle.

    Args:
        name: Agent name
        provider: Chat backend the agent speaks through
        agent_id: Stable identifier (generated when omitted)
        display_name: Name shown to others and used in self-identification
        soul: Static persona text
        prompt: Individual directive, used only on the agent's first turn
        brain: In-memory Brain, or a path to a brain document
        anonymous: Suppress the "You are <name>." line
        brain_store: Store used to read/write brain files

    Raises:
        BrainPathError: If ``brain`` is a path the store refuses
    """

    def __init__(
        self,
        name: str,
        provider: Provider,
        *,
        agent_id: Optional[str] = None,
        display_name: Optional[str] = None,
        soul: Optional[str] = None,
        prompt: Optional[str] = None,
        brain: Union[Brain, Path, str, None] = None,
        anonymous: bool = False,
        brain_store: Optional[BrainStore] = None,
    ) -> None:
        self.id = agent_id or f"agent_{uuid4().hex[:8]}"
        self.name = name
        self.display_name = display_name
        self.provider = provider
        self.soul = soul
        self.prompt = prompt
        self.anonymous = anonymous
        self.brain_store = brain_store or BrainStore()

        self.brain_path: Optional[Path] = None
        self._brain: Optional[Brain] = None
        # Set when the file exists but could not be parsed; it is never overwritten
        self._load_failed = False
        if isinstance(brain, Brain):
            self._brain = brain
        elif brain:
            self.brain_path = self.brain_store.resolve(brain)

    @classmethod
    def from_config(
        cls,
        config: AgentConfig,
        *,
        index: int = 0,
        brain_store: Optional[BrainStore] = None,
    ) -> "Agent":
        """Build an agent from its config, filling gaps from a soul preset."""
        preset = get_preset(config.soul_preset) if config.soul_preset else None
        name = config.name or (preset.name if preset else f"Agent {index + 1}")
        return cls(
            name,
            create_provider(config),
            agent_id=config.id or f"agent_{index}_{uuid4().hex[:8]}",
            display_name=config.display_name,
            soul=config.soul or (preset.soul if preset else None),
            prompt=config.prompt,
            brain=config.brain if config.brain is not None else (preset.brain if preset else None),
            anonymous=config.anonymous,
            brain_store=brain_store,
        )

    @property
    def label(self) -> str:
        """Name used in transcripts and self-identification."""
        return self.display_name or self.name

    @property
    def model(self) -> str:
        return self.provider.model

    @property
    def brain(self) -> Optional[Brain]:
        return self._brain

    @property
    def has_memory(self) -> bool:
        return self.brain_path is not None or self._brain is not None

    def summary(self) -> AgentSummary:
        return AgentSummary(name=self.label, model=self.model, has_memory=self.has_memory)

    # ------------------------------------------------------------------
    # Brain lifecycle
    # ------------------------------------------------------------------

    async def load_brain(self) -> None:
        """Read the brain from storage unless it is already in memory.

        Read or parse failures are not fatal: the agent continues with an
        empty brain and the unreadable file is left untouched.
        """
        if self._brain is not None or self.brain_path is None:
            return

        try:
            self._brain = await self.brain_store.load(self.brain_path)
        except MemoryLoadError as exc:
            log_error(f"[{self.label}] {exc}; starting without memories")
            self._brain = Brain()
            self._load_failed = True
            return

        log_deterministic(
            f"[{self.label}] Loaded brain: {len(self._brain.knowledge_graph.concepts)} concepts, "
            f"{len(self._brain.conversation_memories)} memories"
        )

    async def save_brain(self) -> bool:
        """Write the brain back to its file. Returns False if nothing was written."""
        if self.brain_path is None or self._brain is None:
            return False
        if self._load_failed:
            log_error(f"[{self.label}] Not overwriting unreadable brain at {self.brain_path}")
            return False

        try:
            path = await self.brain_store.save(self.brain_path, self._brain)
        except PersistenceError as exc:
            log_error(f"[{self.label}] Failed to save brain: {exc}")
            return False

        log_success(f"[{self.label}] Saved brain to {path}")
        return True

    def add_memory(self, key: str, value: Any) -> MemoryEntry:
        """Append a timestamped episodic memory, creating the brain if needed."""
        if self._brain is None:
            self._brain = Brain()
        entry = MemoryEntry(key=key, value=value, timestamp=datetime.now(timezone.utc))
        self._brain.conversation_memories.append(entry)
        return entry

    # ------------------------------------------------------------------
    # Conversation
    # ------------------------------------------------------------------

    def compose_system_prompt(self) -> Optional[str]:
        return compose_system_prompt(self)

    async def respond(self, history: Sequence[Message]) -> str:
        """Ask the bound provider for this agent's next message.

        Raises:
            ProviderError: Propagated unchanged from the provider
        """
        return await self.provider.chat(history, self.compose_system_prompt())

    def __repr__(self) -> str:
        return f"Agent(id={self.id!r}, name={self.label!r}, model={self.model!r})"
