"""
Combat history statistics for the current fight.

Tracks which styles each side attacks with, which protect prayers each side
uses, and how often those prayers were right, both cumulatively and over a
fixed-depth window of the most recent events. The tracker describes the
fight, not the opponent object, so it survives opponent rebinds.
"""

import logging
from collections import deque
from typing import Deque, Dict, Optional

from .state import CombatStyle, Side

logger = logging.getLogger(__name__)

RECENT_WINDOW = 5
TARGET_MAX_HP_ESTIMATE = 99
CONFIDENCE_EVENTS = 20

DAMAGE_SCALE_MIN = 0.5
DAMAGE_SCALE_MAX = 2.0

_STYLE_KEYS = {CombatStyle.MELEE: "Melee", CombatStyle.MAGIC: "Mage", CombatStyle.RANGED: "Range"}


def _ratio(count: float, total: float) -> float:
    if total <= 0:
        return 0.0
    return min(1.0, max(0.0, count / total))


class _StyleCounter:
    """Cumulative per-style counts plus a FIFO window of the latest styles."""

    def __init__(self, window: int):
        self.counts: Dict[CombatStyle, int] = {style: 0 for style in CombatStyle}
        self.recent: Deque[CombatStyle] = deque(maxlen=window)

    def add(self, style: CombatStyle):
        self.counts[style] += 1
        self.recent.append(style)

    def recent_count(self, style: CombatStyle) -> int:
        return sum(1 for s in self.recent if s is style)


class _FlagCounter:
    """Cumulative count of true flags plus a FIFO window of the latest flags."""

    def __init__(self, window: int):
        self.count = 0
        self.recent: Deque[bool] = deque(maxlen=window)

    def add(self, flag: bool):
        if flag:
            self.count += 1
        self.recent.append(flag)

    def recent_count(self) -> int:
        return sum(self.recent)


class CombatHistoryTracker:
    """
    Style/prayer statistics for both sides of one engagement.

    Hits are counted against the side that dealt them; defences against the
    side that prayed. "Hit correct" counts opponent hits the agent failed to
    protect against, "pray correct" counts agent hits the opponent protected
    against.
    """

    def __init__(self, recent_window: int = RECENT_WINDOW,
                 target_max_hp: int = TARGET_MAX_HP_ESTIMATE,
                 confidence_events: int = CONFIDENCE_EVENTS):
        if recent_window < 1:
            raise ValueError(f"recent_window must be >= 1, got {recent_window}")
        self.window = recent_window
        self.target_max_hp = target_max_hp
        self.confidence_events = confidence_events

        self._hits = {side: _StyleCounter(recent_window) for side in Side}
        self._prays = {side: _StyleCounter(recent_window) for side in Side}
        self._target_hit_correct = _FlagCounter(recent_window)
        self._target_pray_correct = _FlagCounter(recent_window)
        self._total_hits = {side: 0 for side in Side}

        self.total_damage_dealt = 0.0
        self.total_damage_received = 0.0
        self.tick_damage_dealt = 0.0
        self.tick_damage_received = 0.0

    # =========================================================================
    # Recording
    # =========================================================================

    def record_hit(self, source: Side, style: CombatStyle, amount: int, max_hp: Optional[int] = None):
        """
        Record a hitsplat dealt by `source` to the other side.

        Args:
            source: Side that dealt the hit
            style: Style of the attack that produced it
            amount: Damage shown on the hitsplat (0 for a miss)
            max_hp: Defender's max hitpoints, used to normalize damage
        """
        self._hits[source].add(style)
        self._total_hits[source] += 1
        if source is Side.AGENT:
            scaled = max(0, amount) / float(max_hp or self.target_max_hp)
            self.total_damage_dealt += scaled
            self.tick_damage_dealt += scaled
        else:
            scaled = max(0, amount) / float(max_hp or TARGET_MAX_HP_ESTIMATE)
            self.total_damage_received += scaled
            self.tick_damage_received += scaled

    def record_defense(self, defender: Side, prayed: Optional[CombatStyle], was_correct: bool):
        """
        Record the defender's protect prayer at the moment a hit landed.

        Args:
            defender: Side that received the hit
            prayed: Style the defender's protect prayer covered, None if none was active
            was_correct: Whether that prayer matched the incoming style
        """
        if prayed is not None:
            self._prays[defender].add(prayed)
        if defender is Side.AGENT:
            self._target_hit_correct.add(not was_correct)
        else:
            self._target_pray_correct.add(was_correct)

    def record_agent_damaged(self, style: CombatStyle, amount: int,
                             agent_prayer: Optional[CombatStyle], agent_max_hp: Optional[int] = None):
        self.record_hit(Side.OPPONENT, style, amount, agent_max_hp)
        self.record_defense(Side.AGENT, agent_prayer, agent_prayer is style)

    def record_target_damaged(self, style: CombatStyle, amount: int,
                              target_prayer: Optional[CombatStyle]):
        self.record_hit(Side.AGENT, style, amount)
        self.record_defense(Side.OPPONENT, target_prayer, target_prayer is style)

    def on_cycle_end(self):
        """Reset per-cycle scales. Cumulative and windowed stats are kept."""
        self.tick_damage_dealt = 0.0
        self.tick_damage_received = 0.0

    # =========================================================================
    # Ratios
    # =========================================================================

    def total_hits(self, source: Side) -> int:
        return self._total_hits[source]

    def style_ratio(self, source: Side, style: CombatStyle) -> float:
        return _ratio(self._hits[source].counts[style], self._total_hits[source])

    def recent_style_ratio(self, source: Side, style: CombatStyle) -> float:
        return _ratio(self._hits[source].recent_count(style), self.window)

    def pray_ratio(self, defender: Side, style: CombatStyle) -> float:
        # Defences happen once per incoming hit, so the other side's hits are the total.
        return _ratio(self._prays[defender].counts[style], self._total_hits[self._other(defender)])

    def recent_pray_ratio(self, defender: Side, style: CombatStyle) -> float:
        return _ratio(self._prays[defender].recent_count(style), self.window)

    @property
    def target_hit_correct_ratio(self) -> float:
        return _ratio(self._target_hit_correct.count, self._total_hits[Side.OPPONENT])

    @property
    def recent_target_hit_correct_ratio(self) -> float:
        return _ratio(self._target_hit_correct.recent_count(), self.window)

    @property
    def target_pray_correct_ratio(self) -> float:
        return _ratio(self._target_pray_correct.count, self._total_hits[Side.AGENT])

    @property
    def recent_target_pray_correct_ratio(self) -> float:
        return _ratio(self._target_pray_correct.recent_count(), self.window)

    @property
    def target_hit_confidence(self) -> float:
        return min(1.0, self._total_hits[Side.OPPONENT] / float(self.confidence_events))

    @property
    def target_pray_confidence(self) -> float:
        return min(1.0, self._total_hits[Side.AGENT] / float(self.confidence_events))

    @property
    def damage_dealt_scale(self) -> float:
        ratio = (self.total_damage_dealt + 1.0) / (self.total_damage_received + 1.0)
        return min(DAMAGE_SCALE_MAX, max(DAMAGE_SCALE_MIN, ratio))

    @staticmethod
    def _other(side: Side) -> Side:
        return Side.OPPONENT if side is Side.AGENT else Side.AGENT

    # =========================================================================
    # Observation fields
    # =========================================================================

    def observation_fields(self) -> Dict[str, float]:
        """History statistics keyed by observation field name."""
        fields: Dict[str, float] = {
            "damageDealtScale": self.damage_dealt_scale,
            "targetHitConfidence": self.target_hit_confidence,
            "targetPrayConfidence": self.target_pray_confidence,
            "targetHitCorrectCount": self.target_hit_correct_ratio,
            "targetPrayCorrectCount": self.target_pray_correct_ratio,
            "recentTargetHitCorrectCount": self.recent_target_hit_correct_ratio,
            "recentTargetPrayCorrectCount": self.recent_target_pray_correct_ratio,
            "hitsplatsLandedOnAgentScale": self.tick_damage_received,
            "hitsplatsLandedOnTargetScale": self.tick_damage_dealt,
        }
        for style, key in _STYLE_KEYS.items():
            fields[f"targetHit{key}Count"] = self.style_ratio(Side.OPPONENT, style)
            fields[f"playerHit{key}Count"] = self.style_ratio(Side.AGENT, style)
            fields[f"targetPray{key}Count"] = self.pray_ratio(Side.OPPONENT, style)
            fields[f"playerPray{key}Count"] = self.pray_ratio(Side.AGENT, style)
            fields[f"recentTargetHit{key}Count"] = self.recent_style_ratio(Side.OPPONENT, style)
            fields[f"recentPlayerHit{key}Count"] = self.recent_style_ratio(Side.AGENT, style)
            fields[f"recentTargetPray{key}Count"] = self.recent_pray_ratio(Side.OPPONENT, style)
            fields[f"recentPlayerPray{key}Count"] = self.recent_pray_ratio(Side.AGENT, style)
        return fields

    def to_dict(self) -> Dict[str, float]:
        return {
            "agent_hits": self._total_hits[Side.AGENT],
            "opponent_hits": self._total_hits[Side.OPPONENT],
            "damage_dealt": round(self.total_damage_dealt, 3),
            "damage_received": round(self.total_damage_received, 3),
            "damage_dealt_scale": round(self.damage_dealt_scale, 3),
            "target_hit_correct_ratio": round(self.target_hit_correct_ratio, 3),
            "target_pray_correct_ratio": round(self.target_pray_correct_ratio, 3),
        }
