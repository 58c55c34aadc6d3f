from .settings import CleanupConfig, MemorySettings, NormalizerConfig, TriggerConfig

__all__ = [
    "CleanupConfig",
    "MemorySettings",
    "NormalizerConfig",
    "TriggerConfig",
]
