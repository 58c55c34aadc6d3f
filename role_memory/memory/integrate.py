"""
Memory integration hooks for the host prompt assembler.

Provides prompt injection for a conversation turn and a factory that wires
store, trigger engine and eviction policy from settings.
"""

import logging
from pathlib import Path
from typing import Dict, Optional, Tuple

from role_memory.config import MemorySettings
from role_memory.persist import KVStore, memory_version
from .policy import EvictionPolicy
from .recall import TriggerEngine
from .schemas import ConversationSnapshot, InjectionMetadata
from .store import MemoryStore


logger = logging.getLogger(__name__)


class MemoryIntegration:
    """
    Integration layer between role memory and the prompt assembler.

    Provides:
    - Pre-prompt memory injection
    - Memory version tracking for cache keys
    - Role purge that also resets turn tracking
    """

    def __init__(self, store: MemoryStore, engine: TriggerEngine, policy: EvictionPolicy):
        self.store = store
        self.engine = engine
        self.policy = policy

    async def inject(self, snapshot: ConversationSnapshot) -> Tuple[str, InjectionMetadata]:
        """
        Build the memory block to append to the next system prompt.

        Any failure while triggering leaves the turn without memories
        instead of failing it.

        Args:
            snapshot: Current conversation state

        Returns:
            (memory block, metadata); the block is "" when nothing applies
        """
        try:
            result = await self.engine.trigger(snapshot)
        except Exception:
            logger.exception(f"Memory injection failed for role {snapshot.role_id}, continuing without memories")
            return "", InjectionMetadata()

        if result.superseded:
            return "", InjectionMetadata(superseded=True)

        if not result.matched_ids and not result.full_content:
            return "", InjectionMetadata()

        metadata = InjectionMetadata(
            used_ids=result.matched_ids,
            used_count=result.injected_count,
            used_chars=sum(len(f) for f in result.fragments),
            memory_version=memory_version(snapshot.role_id, result.matched_ids),
        )
        return result.full_content, metadata

    async def clear_role(self, role_id: str) -> Dict[str, int]:
        """Delete every record of a role and forget its turn tracking."""
        counts = await self.store.clear_role(role_id)
        self.engine.forget(role_id)
        return counts



def create_memory_integration(
    settings: Optional[MemorySettings] = None,
    kv: Optional[KVStore] = None,
) -> MemoryIntegration:
    """
    Factory function to create memory integration.

    Args:
        settings: Role memory settings (default: from environment)
        kv: Existing KV store; opened at `settings.db_path` when absent

    Returns:
        MemoryIntegration instance
    """
    settings = settings or MemorySettings.from_env()
    kv = kv or KVStore(Path(settings.db_path))

    store = MemoryStore(kv)
    engine = TriggerEngine(store, settings.trigger)
    policy = EvictionPolicy(store, settings.cleanup)

    return MemoryIntegration(store, engine, policy)
