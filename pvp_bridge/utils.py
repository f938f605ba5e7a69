"""
Utility tables and helpers for the PvP bridge.
Includes animation/graphic mappings, item name classification and the item catalog.
"""

import json
import re
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Dict, Iterable, Mapping, Optional, Pattern, Tuple

from .state import CombatStyle, InventoryItem, ItemLookup, ItemStats

# =========================================================================
# Animations and graphics
# =========================================================================

EAT_ANIMATION = 829  # eating and drinking share one animation
CONSUMABLE_GUARD_TICKS = 3

ATTACK_ANIMATIONS: Mapping[int, CombatStyle] = {
    # Melee: punch/kick, whip, slash/stab, dragon claws, godswords
    390: CombatStyle.MELEE, 422: CombatStyle.MELEE, 386: CombatStyle.MELEE,
    1658: CombatStyle.MELEE, 7514: CombatStyle.MELEE, 7515: CombatStyle.MELEE,
    7644: CombatStyle.MELEE, 7645: CombatStyle.MELEE, 7640: CombatStyle.MELEE,
    7642: CombatStyle.MELEE,
    # Ranged: bow, crossbow, ballista
    426: CombatStyle.RANGED, 4230: CombatStyle.RANGED, 5061: CombatStyle.RANGED,
    # Magic: standard, staff, ancient barrage
    1167: CombatStyle.MAGIC, 7855: CombatStyle.MAGIC, 1979: CombatStyle.MAGIC,
}

BARRAGE_ANIMATION = 1979

# Freeze graphic -> freeze length in ticks (bind, snare, entangle/blitz, barrage)
FREEZE_GRAPHICS: Mapping[int, int] = {361: 8, 363: 16, 367: 24, 369: 32}
FREEZE_IMMUNITY_EXTRA_TICKS = 5

VENGEANCE_GRAPHIC = 726
VENGEANCE_OTHER_GRAPHIC = 725
VENGEANCE_GRAPHICS = frozenset({VENGEANCE_GRAPHIC, VENGEANCE_OTHER_GRAPHIC})
VENGEANCE_COOLDOWN_TICKS = 50

# Special attack animation -> energy cost in percent
SPECIAL_ATTACK_COSTS: Mapping[int, int] = {
    1658: 25,   # dragon claws
    1062: 25,   # dragon dagger
    1378: 55,   # dark bow
    7514: 50,   # armadyl godsword
    1667: 50,   # granite maul
    5061: 100,  # ballista
}

DEFAULT_ATTACK_SPEED = 4


def hit_delay_ticks(animation: int) -> int:
    """Ticks between an attack animation and its hitsplat."""
    style = ATTACK_ANIMATIONS.get(animation)
    if animation == BARRAGE_ANIMATION:
        return 4
    if style in (CombatStyle.RANGED, CombatStyle.MAGIC):
        return 2
    return 1


# =========================================================================
# Item name classification
# =========================================================================

def normalize_item_name(name: Optional[str]) -> str:
    if not name:
        return ""
    return " ".join(name.lower().split())


# Flags matched against every carried item name (equipment + inventory).
GEAR_FLAG_PATTERNS: Mapping[str, Pattern[str]] = {
    "isEnchantedDragonBolts": re.compile(r"^(dragonstone dragon bolts|dragon bolts) \(e\)$"),
    "isEnchantedOpalBolts": re.compile(r"^opal (dragon )?bolts \(e\)$"),
    "isEnchantedDiamondBolts": re.compile(r"^diamond (dragon )?bolts \(e\)$"),
    "isNightmareStaff": re.compile(r"nightmare staff"),
    "isZaryteCrossbow": re.compile(r"zaryte crossbow"),
    "isBallista": re.compile(r"(light|heavy) ballista"),
    "isMorrigansJavelins": re.compile(r"morrigan's javelin"),
    "isDragonKnives": re.compile(r"dragon knife"),
    "isDarkBow": re.compile(r"dark bow"),
    "isMeleeSpecDclaws": re.compile(r"dragon claws"),
    "isMeleeSpecDds": re.compile(r"dragon dagger"),
    "isMeleeSpecAgs": re.compile(r"armadyl godsword"),
    "isMeleeSpecVls": re.compile(r"vesta's longsword"),
    "isMeleeSpecStatHammer": re.compile(r"statius's warhammer"),
    "isMeleeSpecAncientGodsword": re.compile(r"ancient godsword"),
    "isMeleeSpecGraniteMaul": re.compile(r"granite maul"),
    "isBloodFury": re.compile(r"amulet of blood fury"),
    "isDharoksSet": re.compile(r"dharok's greataxe"),
    "isZurielStaff": re.compile(r"zuriel's staff"),
}

MELEE_SPEC_FLAGS: Tuple[str, ...] = (
    "isMeleeSpecDclaws", "isMeleeSpecDds", "isMeleeSpecAgs", "isMeleeSpecVls",
    "isMeleeSpecStatHammer", "isMeleeSpecAncientGodsword", "isMeleeSpecGraniteMaul",
)
RANGE_SPEC_FLAGS: Tuple[str, ...] = (
    "isZaryteCrossbow", "isBallista", "isMorrigansJavelins", "isDarkBow", "isDragonKnives",
)
MAGE_SPEC_FLAGS: Tuple[str, ...] = ("isNightmareStaff",)

RANGED_WEAPON_KEYWORDS = (
    "crossbow", "bow", "ballista", "javelin", "knife", "dart",
    "thrownaxe", "throwing axe", "blowpipe", "chinchompa",
)
MAGIC_WEAPON_KEYWORDS = ("staff", "wand", "sceptre", "trident", "kodai", "sanguinesti")

# Weapon keyword -> attack range in tiles, first match wins.
RANGED_ATTACK_RANGES: Tuple[Tuple[str, int], ...] = (
    ("ballista", 10),
    ("crossbow", 8),
    ("bow", 8),
    ("blowpipe", 7),
    ("javelin", 6),
    ("knife", 5),
    ("throwing", 5),
)
DEFAULT_RANGED_ATTACK_RANGE = 7


@lru_cache(maxsize=1024)
def gear_flags_for_name(name: str) -> Tuple[str, ...]:
    """Names of the gear flags a single (normalized) item name sets."""
    return tuple(flag for flag, pattern in GEAR_FLAG_PATTERNS.items() if pattern.search(name))


@lru_cache(maxsize=1024)
def classify_weapon_name(name: str) -> Optional[CombatStyle]:
    """Weapon style from its name alone, None when the name says nothing."""
    if not name:
        return None
    if any(keyword in name for keyword in RANGED_WEAPON_KEYWORDS):
        return CombatStyle.RANGED
    if any(keyword in name for keyword in MAGIC_WEAPON_KEYWORDS):
        return CombatStyle.MAGIC
    return CombatStyle.MELEE


def classify_weapon(stats: Optional[ItemStats], name: str) -> Optional[CombatStyle]:
    """
    Weapon style from bonuses when known, falling back to the name.

    Magic if it has any magic accuracy/damage; ranged if ranged accuracy
    beats slash accuracy or the name says crossbow; otherwise melee.
    """
    if stats is None:
        return classify_weapon_name(name)
    if stats.amagic > 0 or stats.mdmg > 0:
        return CombatStyle.MAGIC
    if stats.arange > stats.aslash or "crossbow" in name:
        return CombatStyle.RANGED
    return CombatStyle.MELEE


def ranged_attack_range(name: str) -> int:
    for keyword, tiles in RANGED_ATTACK_RANGES:
        if keyword in name:
            return tiles
    return DEFAULT_RANGED_ATTACK_RANGE


# =========================================================================
# Consumables
# =========================================================================

POTION_FAMILIES: Mapping[str, Tuple[str, ...]] = {
    "ranging": ("ranging potion", "bastion potion", "divine ranging potion"),
    "combat": ("super combat potion", "divine super combat potion"),
    "restore": ("super restore", "sanfew serum"),
    "brew": ("saradomin brew",),
}

FOOD_NAMES = frozenset({
    "shark", "anglerfish", "dark crab", "manta ray", "sea turtle",
    "tuna potato", "mushroom potato", "pineapple pizza", "cooked karambwan",
})
KARAMBWAN_NAME = "cooked karambwan"
ANGLERFISH_NAME = "anglerfish"

_DOSE_PATTERN = re.compile(r"^(.*)\((\d)\)$")


@lru_cache(maxsize=1024)
def parse_potion(name: str) -> Optional[Tuple[str, int]]:
    """(family, doses) for a potion name like 'saradomin brew(3)'."""
    match = _DOSE_PATTERN.match(name)
    if not match:
        return None
    base = match.group(1).strip()
    for family, names in POTION_FAMILIES.items():
        if base in names:
            return family, int(match.group(2))
    return None


@dataclass(frozen=True)
class ResourceCounts:
    ranging_doses: int = 0
    combat_doses: int = 0
    restore_doses: int = 0
    brew_doses: int = 0
    food: int = 0
    karambwan: int = 0
    anglerfish: int = 0

    def doses(self, family: str) -> int:
        return getattr(self, f"{family}_doses")


def count_resources(inventory: Iterable[InventoryItem], lookup: ItemLookup) -> ResourceCounts:
    """Count potion doses and food in the inventory by item name."""
    doses: Dict[str, int] = {family: 0 for family in POTION_FAMILIES}
    food = karambwan = anglerfish = 0
    for item in inventory:
        name = normalize_item_name(lookup.name(item.item_id))
        if not name:
            continue
        potion = parse_potion(name)
        if potion is not None:
            family, dose = potion
            doses[family] += dose * item.quantity
        elif name == KARAMBWAN_NAME:
            karambwan += item.quantity
        elif name in FOOD_NAMES:
            food += item.quantity
            if name == ANGLERFISH_NAME:
                anglerfish += item.quantity
    return ResourceCounts(
        ranging_doses=doses["ranging"],
        combat_doses=doses["combat"],
        restore_doses=doses["restore"],
        brew_doses=doses["brew"],
        food=food,
        karambwan=karambwan,
        anglerfish=anglerfish,
    )


# =========================================================================
# Item catalog
# =========================================================================

class ItemCatalog:
    """
    Immutable item-id -> (name, stats) mapping loaded once at startup.
    Implements the ItemLookup interface.
    """

    def __init__(self, names: Mapping[int, str], stats: Optional[Mapping[int, ItemStats]] = None):
        self._names = dict(names)
        self._stats = dict(stats or {})

    def name(self, item_id: int) -> Optional[str]:
        return self._names.get(item_id)

    def stats(self, item_id: int) -> Optional[ItemStats]:
        return self._stats.get(item_id)

    def __len__(self) -> int:
        return len(self._names)

    def __contains__(self, item_id: object) -> bool:
        return item_id in self._names


def load_item_catalog(path: Path) -> ItemCatalog:
    """
    Load the item catalog from a JSON file.

    Expected layout: {"<item id>": {"name": "...", "stats": {"astab": 0, ...}}, ...}
    Items without a "stats" entry resolve by name only.
    """
    with open(path, 'r') as f:
        data = json.load(f)

    names: Dict[int, str] = {}
    stats: Dict[int, ItemStats] = {}
    for key, entry in data.items():
        item_id = int(key)
        names[item_id] = entry.get("name", "")
        if entry.get("stats"):
            stats[item_id] = ItemStats(**entry["stats"])
    return ItemCatalog(names, stats)
