"""
PvP decision bridge.
Encodes per-cycle game state for an external policy service and applies its decisions.
"""

from .bridge import EnvironmentBridge

# Contract
from .contract import (
    ACTION_HEAD_SIZES, FLAT_ACTION_SIZE, HEAD_COUNT, OBS_IDS, OBS_SIZE, ContractViolation, Head,
    get_action_space, get_observation_space, safe_default_action,
)

# Configuration
from .config import BridgeConfig, DecisionServiceConfig, PolicyConfig, load_bridge_config

# Components
from .action_mask import ActionMaskBuilder
from .actions import ActionHandler, DecisionPolicy
from .combat_history import CombatHistoryTracker
from .decision_client import DecisionClient
from .embeddings import ObservationBuilder
from .loadouts import GearLoadout, LoadoutOverride, LoadoutRegistry
from .opponent import OpponentProxy
from .timers import CombatTimers, TimerKey, TimerRegistry
from .utils import ItemCatalog, load_item_catalog

__all__ = [
    'EnvironmentBridge',
    # Contract
    'ACTION_HEAD_SIZES',
    'FLAT_ACTION_SIZE',
    'HEAD_COUNT',
    'OBS_IDS',
    'OBS_SIZE',
    'ContractViolation',
    'Head',
    'get_action_space',
    'get_observation_space',
    'safe_default_action',
    # Configuration
    'BridgeConfig',
    'DecisionServiceConfig',
    'PolicyConfig',
    'load_bridge_config',
    # Components
    'ActionMaskBuilder',
    'ActionHandler',
    'DecisionPolicy',
    'CombatHistoryTracker',
    'DecisionClient',
    'ObservationBuilder',
    'GearLoadout',
    'LoadoutOverride',
    'LoadoutRegistry',
    'OpponentProxy',
    'CombatTimers',
    'TimerKey',
    'TimerRegistry',
    'ItemCatalog',
    'load_item_catalog',
]
