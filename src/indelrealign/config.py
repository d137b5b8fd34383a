from __future__ import annotations

import enum
import math
from dataclasses import dataclass


class ConfigurationError(ValueError):
    """Raised for invalid engine settings, before any read is processed."""


class ConsensusStrategy(enum.Enum):
    """Where candidate consensuses come from."""

    FROM_READS = "reads"
    FROM_KNOWN_SITES = "known"


@dataclass(frozen=True)
class RealignConfig:
    """Engine settings.

    Attributes
    ----------
    strategy:
        Consensus generation strategy.
    is_sorted:
        Input is already ordered by (contig, start). If False the engine sorts first.
    max_indel_size:
        Largest indel (bp) that counts as evidence or becomes a candidate.
    max_consensus_number:
        Upper bound on candidate consensuses per target region.
    lod_threshold:
        A read is rewritten only if its log10 cost improvement exceeds this.
    max_target_size:
        Upper bound on target region width (bp).
    """

    strategy: ConsensusStrategy = ConsensusStrategy.FROM_READS
    is_sorted: bool = False
    max_indel_size: int = 500
    max_consensus_number: int = 30
    lod_threshold: float = 5.0
    max_target_size: int = 3000

    def validate(self) -> "RealignConfig":
        if not isinstance(self.strategy, ConsensusStrategy):
            raise ConfigurationError(f"Unknown consensus strategy: {self.strategy!r}")
        if self.max_target_size <= 0:
            raise ConfigurationError(f"max_target_size must be > 0 (got {self.max_target_size})")
        if self.max_consensus_number <= 0:
            raise ConfigurationError(
                f"max_consensus_number must be > 0 (got {self.max_consensus_number})"
            )
        if self.max_indel_size < 0:
            raise ConfigurationError(f"max_indel_size must be >= 0 (got {self.max_indel_size})")
        if math.isnan(self.lod_threshold) or self.lod_threshold < 0:
            raise ConfigurationError(f"lod_threshold must be >= 0 (got {self.lod_threshold})")
        return self
