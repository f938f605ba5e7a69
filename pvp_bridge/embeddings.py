"""
Observation Builder for the PvP decision bridge.
Coordinates feature extraction using the field encoders from pvp_bridge/encoders.py.
"""

import logging
import math
from collections import Counter
from typing import List, Optional, Sequence, Tuple

import numpy as np

from .contract import (
    OBS_IDS, OBS_INDEX, OBS_SIZE, ContractViolation, observation_bounds, validate_observation,
)
from .encoders import (
    AgentEquipmentEncoder, AvailabilityEncoder, CombatTimingEncoder, EncodingContext,
    FieldEncoder, GearEncoder, HealthEncoder, HistoryEncoder, LevelEncoder, ModeEncoder,
    OpponentEquipmentEncoder, PositionEncoder, PrayerEncoder, ResourceEncoder,
)

logger = logging.getLogger(__name__)


def default_encoders() -> List[FieldEncoder]:
    return [
        AgentEquipmentEncoder(),
        PrayerEncoder(),
        HealthEncoder(),
        OpponentEquipmentEncoder(),
        ResourceEncoder(),
        CombatTimingEncoder(),
        PositionEncoder(),
        LevelEncoder(),
        AvailabilityEncoder(),
        HistoryEncoder(),
        GearEncoder(),
        ModeEncoder(),
    ]


class ObservationBuilder:
    """
    Constructs the observation vector for the decision service.
    Delegates to specialized FieldEncoder classes.
    """

    def __init__(self, encoders: Optional[Sequence[FieldEncoder]] = None):
        """
        Initialize the observation builder.

        Args:
            encoders: Field encoders to run; together they must cover every
                contract field exactly once

        Raises:
            ContractViolation: If the encoders leave a field unowned or claim one twice
        """
        self.encoders = list(encoders) if encoders is not None else default_encoders()
        self._check_coverage()
        self.observation_size = OBS_SIZE

    def _check_coverage(self):
        owners = Counter(name for encoder in self.encoders for name in encoder.FIELDS)
        unknown = sorted(name for name in owners if name not in OBS_INDEX)
        duplicated = sorted(name for name, count in owners.items() if count > 1)
        missing = [name for name in OBS_IDS if name not in owners]
        if unknown or duplicated or missing:
            raise ContractViolation(
                f"CRITICAL OBS SIZE MISMATCH! Encoders out of sync with contract: "
                f"unknown={unknown}, duplicated={duplicated}, missing={missing}"
            )

    def get_observation_space_bounds(self) -> Tuple[np.ndarray, np.ndarray]:
        """Get low and high bounds for observation space."""
        return observation_bounds()

    def build(self, ctx: EncodingContext) -> np.ndarray:
        """
        Convert one cycle's context to the observation vector.
        """
        obs = np.zeros(OBS_SIZE, dtype=np.float32)
        for encoder in self.encoders:
            name = type(encoder).__name__
            values = encoder.encode(ctx)
            extra = set(values) - set(encoder.FIELDS)
            if extra:
                raise ContractViolation(f"Encoder {name} wrote fields it does not own: {sorted(extra)}")
            for field, value in values.items():
                if not math.isfinite(value):
                    logger.error(f"Encoder {name} produced non-finite {field}={value}")
                    value = 0.0  # Soft fix to keep the cycle alive, but log error
                obs[OBS_INDEX[field]] = value
        return validate_observation(obs)
