"""
Feature Flags - Active Configuration.
"""
from dataclasses import dataclass
import os
from loguru import logger


@dataclass
class FeatureFlags:
    # Ranking
    RELATED_TOPICS: bool = True      # Related-topic bonus in feed ranking
    WEIGHT_DECAY: bool = True        # Idle levels decay in weight snapshots

    # Feed bookkeeping
    FEED_CHANGE_LOG: bool = True     # Record added/removed feed items locally

    # Sync
    REMOTE_PULL: bool = True         # Pull other devices' events on sync
    BACKGROUND_SYNC: bool = False    # Start the periodic sync thread with the engine

    def __post_init__(self):
        for flag_name in self.__dataclass_fields__:
            env_key = f"TRIVIAFEED_{flag_name}"
            env_val = os.environ.get(env_key)
            if env_val is not None:
                setattr(self, flag_name, env_val.lower() in ("1", "true", "yes", "on"))
                logger.debug("Feature flag {} overridden by {}={}", flag_name, env_key, env_val)

    def is_enabled(self, flag_name: str) -> bool:
        return getattr(self, flag_name, False)

# Singleton
_flags = FeatureFlags()
def get_flags() -> FeatureFlags: return _flags
