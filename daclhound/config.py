"""
daclhound Configuration Module
==============================

Centralized configuration management for the collection pipeline.
Supports environment variables for deployment-specific tuning.

Design Decision:
- Configuration is a dataclass tree that can be passed through the pipeline
- Queue capacity and worker count are the only knobs that change throughput
- Directory bind settings live with the caller; only query settings are here
"""

import os
from dataclasses import dataclass, field, asdict
from typing import Optional


@dataclass
class LDAPConfig:
    """Configuration for directory queries.

    Attributes:
        page_size: Page size for paged LDAP searches
        timeout: Per-search time limit in seconds (0 = server default)
        sd_flags: SD_FLAGS control value (OWNER=1, GROUP=2, DACL=4, SACL=8)
    """
    page_size: int = 1000
    timeout: int = 0
    sd_flags: int = 0x05  # Owner + DACL


@dataclass
class PipelineConfig:
    """Configuration for the producer/worker pipeline.

    Attributes:
        queue_capacity: Maximum number of undelivered entries held in the queue
        worker_count: Number of consumer threads
        put_timeout: Seconds a blocked producer waits before re-checking cancellation
    """
    queue_capacity: Optional[int] = None
    worker_count: Optional[int] = None
    put_timeout: float = 0.5

    def __post_init__(self):
        """Load sizing from environment if not explicitly provided."""
        if self.queue_capacity is None:
            self.queue_capacity = int(os.environ.get("DACLHOUND_QUEUE_CAPACITY", "1000"))
        if self.worker_count is None:
            self.worker_count = int(os.environ.get("DACLHOUND_WORKERS", "8"))

        if self.queue_capacity <= 0:
            raise ValueError(f"queue_capacity must be positive, got {self.queue_capacity}")
        if self.worker_count <= 0:
            raise ValueError(f"worker_count must be positive, got {self.worker_count}")
        if self.put_timeout <= 0:
            raise ValueError(f"put_timeout must be positive, got {self.put_timeout}")


@dataclass
class CollectorConfig:
    """Main configuration container for daclhound.

    Usage:
        config = CollectorConfig()  # Uses all defaults
        config = CollectorConfig(pipeline=PipelineConfig(worker_count=16))
    """
    ldap: LDAPConfig = field(default_factory=LDAPConfig)
    pipeline: PipelineConfig = field(default_factory=PipelineConfig)

    # Verbosity level for logging
    verbose: bool = True
    debug: bool = False

    @classmethod
    def from_dict(cls, config_dict: dict) -> "CollectorConfig":
        """Create configuration from a dictionary.

        Useful for loading from JSON/YAML files.
        """
        return cls(
            ldap=LDAPConfig(**config_dict.get("ldap", {})),
            pipeline=PipelineConfig(**config_dict.get("pipeline", {})),
            verbose=config_dict.get("verbose", True),
            debug=config_dict.get("debug", False)
        )

    def to_dict(self) -> dict:
        """Convert configuration to dictionary for serialization."""
        return asdict(self)


# Default global configuration instance
_default_config: Optional[CollectorConfig] = None


def get_config() -> CollectorConfig:
    """Get the global configuration instance."""
    global _default_config
    if _default_config is None:
        _default_config = CollectorConfig()
    return _default_config


def set_config(config: Optional[CollectorConfig]) -> None:
    """Set the global configuration instance."""
    global _default_config
    _default_config = config
