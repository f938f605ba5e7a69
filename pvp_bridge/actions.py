"""
Action handling logic for the PvP decision bridge.
Handles validation, fallback logic and the request/response gating policy.
"""

import logging
import time
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

import numpy as np

from .config import DEFAULT_POLICY_CONFIG, PolicyConfig
from .contract import (
    ACTION_HEAD_SIZES, HEAD_COUNT, HEAD_NAMES, HEAD_OPTIONS, NOOP, Head, safe_default_action,
)
from .decision_client import DecisionClient

logger = logging.getLogger(__name__)


class ActionHandler:
    """
    Handles action validation and fallback logic.
    Maps a raw decision onto the current cycle's mask.
    """

    def validate(self, action: Sequence[int], mask: Sequence[Sequence[bool]]) -> List[int]:
        """
        Re-validate a decision against the current mask.

        Out-of-range entries are clamped and masked-out options replaced with
        the head's no-op. Wrong arity yields the fallback action.
        """
        if len(action) != HEAD_COUNT:
            logger.warning(f"Action arity {len(action)} != {HEAD_COUNT}, using fallback")
            return self.get_fallback_action()

        validated = []
        for head, (value, size) in enumerate(zip(action, ACTION_HEAD_SIZES)):
            if not isinstance(value, (int, np.integer)):
                logger.debug(f"Action type converted: {type(value).__name__} -> int")
                value = int(value)
            if not 0 <= value < size:
                logger.debug(f"Action clamped on {HEAD_NAMES[head]}: {value} -> [0, {size - 1}]")
                value = max(0, min(size - 1, value))
            if not mask[head][value]:
                logger.warning(
                    f"Masked-out option {HEAD_NAMES[head]}={HEAD_OPTIONS[head][value]} replaced with no-op"
                )
                value = NOOP
            validated.append(int(value))
        return validated

    def get_fallback_action(self) -> List[int]:
        return safe_default_action()

    @staticmethod
    def is_noop(action: Sequence[int]) -> bool:
        return all(v == NOOP for v in action)

    @staticmethod
    def is_safe(action: Sequence[int], has_opponent: bool) -> bool:
        """Safe mode: never attack, and never pray without a real opponent."""
        if action[Head.ATTACK] != NOOP:
            return False
        if action[Head.PRAYER] != NOOP and not has_opponent:
            return False
        return True

    @staticmethod
    def describe(action: Sequence[int]) -> str:
        parts = []
        for head, value in enumerate(action):
            if value != NOOP:
                parts.append(f"{HEAD_NAMES[head]}={HEAD_OPTIONS[head][value]}")
        return ", ".join(parts) if parts else "no-op"


@dataclass(frozen=True)
class PendingDecision:
    future: "Future[List[int]]"
    engagement_id: int
    tick: int
    target_name: str


class DecisionPolicy:
    """
    Gates traffic between the pipeline and the decision client.

    At most one request is in flight. Each engagement gets a generation id;
    a response for an older generation is discarded, and every response is
    re-validated against the mask of the cycle it is applied on.
    """

    def __init__(self, client: DecisionClient, config: PolicyConfig = DEFAULT_POLICY_CONFIG,
                 handler: Optional[ActionHandler] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.client = client
        self.config = config
        self.handler = handler or ActionHandler()
        self._clock = clock

        self.engagement_id = 0
        self.pending: Optional[PendingDecision] = None
        self._last_request_time: Optional[float] = None

        self.discarded_stale = 0
        self.skipped_noop = 0
        self.blocked_unsafe = 0

    def begin_engagement(self, target_name: str):
        self._new_generation()
        logger.info(f"Engagement {self.engagement_id} started against {target_name}")

    def end_engagement(self):
        self._new_generation()
        logger.info(f"Engagement ended (generation now {self.engagement_id})")

    def _new_generation(self):
        self.engagement_id += 1
        if self.pending is not None:
            # Cancel only stops a request still queued; a running one resolves unobserved.
            self.pending.future.cancel()
            self.discarded_stale += 1
            logger.debug(f"Discarded in-flight request from engagement {self.pending.engagement_id}")
            self.pending = None

    def can_request(self) -> bool:
        if not self.config.enabled or self.pending is not None:
            return False
        if self._last_request_time is None:
            return True
        elapsed_ms = (self._clock() - self._last_request_time) * 1000.0
        return elapsed_ms >= self.config.action_delay_ms

    def maybe_request(self, tick: int, observation: Sequence[float], mask: Sequence[Sequence[bool]],
                      target_name: str, reward: float = 0.0) -> bool:
        """Issue a request if the rate limit and the in-flight rule allow it."""
        if not self.can_request():
            return False
        future = self.client.request_action_async(tick, reward, observation, mask)
        self.pending = PendingDecision(future, self.engagement_id, tick, target_name)
        self._last_request_time = self._clock()
        return True

    def poll(self, tick: int, mask: Sequence[Sequence[bool]], has_opponent: bool) -> Optional[List[int]]:
        """
        Collect a finished response and turn it into a dispatchable action.

        Returns:
            The validated action, or None if nothing should be dispatched
        """
        pending = self.pending
        if pending is None or not pending.future.done():
            return None
        self.pending = None

        action = pending.future.result()
        if self.handler.is_noop(action):
            self.skipped_noop += 1
            logger.warning(f"[tick={tick}][target={pending.target_name}] Decision was all no-ops, skipping")
            return None

        validated = self.handler.validate(action, mask)
        if self.handler.is_noop(validated):
            return None
        if self.config.safe_mode and not self.handler.is_safe(validated, has_opponent):
            self.blocked_unsafe += 1
            logger.info(f"[tick={tick}] Safe mode blocked: {self.handler.describe(validated)}")
            return None

        latency_ticks = tick - pending.tick
        logger.info(
            f"[tick={tick}][target={pending.target_name}] Action ({latency_ticks} ticks): "
            f"{self.handler.describe(validated)}"
        )
        return validated

    def reset(self):
        """Drop any in-flight request and the rate-limit clock."""
        self._new_generation()
        self._last_request_time = None
