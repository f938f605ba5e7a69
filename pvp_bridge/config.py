"""
Configuration models with validation.

Uses Pydantic for type checking and validation of bridge/client configs.
"""

import json
from pathlib import Path

from pydantic import BaseModel, Field, field_validator

from .loadouts import LoadoutOverride

CYCLE_PERIOD_S = 0.6


class DecisionServiceConfig(BaseModel):
    """Connection to the external decision service."""

    host: str = Field(default="127.0.0.1", description="Decision service host")
    port: int = Field(default=5557, ge=1, le=65535, description="Decision service port")
    model: str = Field(default="FineTunedNh", description="Model identifier sent with every request")
    connect_timeout_s: float = Field(default=5.0, gt=0, description="TCP connect timeout")
    read_timeout_s: float = Field(default=0.5, gt=0, description="Per-response read timeout")
    deterministic: bool = Field(default=False, description="Ask the service for argmax actions")
    high_latency_ms: float = Field(default=100.0, ge=0, description="Warn above this round-trip time")

    @field_validator('read_timeout_s')
    @classmethod
    def read_timeout_within_cycle(cls, v: float) -> float:
        if v >= CYCLE_PERIOD_S:
            raise ValueError(f'read_timeout_s must stay under one cycle ({CYCLE_PERIOD_S}s)')
        return v


class PolicyConfig(BaseModel):
    """Gating applied to decisions before they are dispatched."""

    enabled: bool = Field(default=True, description="Request and dispatch actions at all")
    action_delay_ms: int = Field(default=50, ge=0, le=5000, description="Minimum interval between requests")
    safe_mode: bool = Field(default=False, description="Only allow non-attacking actions")
    auto_connect: bool = Field(default=True, description="Connect to the service when the bridge starts")


class HistoryConfig(BaseModel):
    """Combat history window and normalization."""

    recent_window: int = Field(default=5, ge=1, le=100, description="Events kept in the recent window")
    target_max_hp: int = Field(default=99, ge=1, description="Assumed opponent max hitpoints")
    confidence_events: int = Field(default=20, ge=1, description="Events for full statistic confidence")


class OpponentConfig(BaseModel):
    """Inference defaults for the bound opponent."""

    initial_special: int = Field(default=100, ge=0, le=100, description="Special energy assumed on bind")
    spec_regen_interval: int = Field(default=50, ge=1, description="Cycles per special regeneration step")
    spec_regen_amount: int = Field(default=10, ge=0, le=100, description="Special regained per step")


class BridgeConfig(BaseModel):
    """Top-level bridge configuration."""

    decision: DecisionServiceConfig = Field(default_factory=DecisionServiceConfig)
    policy: PolicyConfig = Field(default_factory=PolicyConfig)
    history: HistoryConfig = Field(default_factory=HistoryConfig)
    opponent: OpponentConfig = Field(default_factory=OpponentConfig)

    loadout_override: LoadoutOverride = Field(default=LoadoutOverride.AUTO)
    debug_mode: bool = Field(default=False, description="Log observations and masks every cycle")
    log_json: bool = Field(default=False, description="Structured JSON logs")
    tick_budget_ms: float = Field(default=100.0, gt=0, description="Warn when a cycle takes longer")
    metrics_interval: int = Field(default=100, ge=1, description="Cycles between client metric logs")

    @field_validator('tick_budget_ms')
    @classmethod
    def budget_within_cycle(cls, v: float) -> float:
        if v > CYCLE_PERIOD_S * 1000:
            raise ValueError('tick_budget_ms larger than a whole cycle')
        return v


def load_bridge_config(path: Path) -> BridgeConfig:
    """Load a BridgeConfig from JSON; missing keys keep their defaults."""
    with open(path, 'r') as f:
        return BridgeConfig.model_validate(json.load(f))


# Default configurations
DEFAULT_DECISION_CONFIG = DecisionServiceConfig()
DEFAULT_POLICY_CONFIG = PolicyConfig()
DEFAULT_BRIDGE_CONFIG = BridgeConfig()
