import json
import socketserver
import sys
import threading
from pathlib import Path

import pytest

ROOT_PATH = Path(__file__).resolve().parents[1]
ROOT_STR = str(ROOT_PATH)
if ROOT_STR not in sys.path:
    sys.path.insert(0, ROOT_STR)

from pvp_bridge.combat_history import CombatHistoryTracker
from pvp_bridge.encoders import EncodingContext
from pvp_bridge.gear import GearFeatureExtractor, build_capabilities
from pvp_bridge.loadouts import FightType
from pvp_bridge.opponent import OpponentProxy
from pvp_bridge.state import (
    EMPTY_EQUIPMENT, RING, SHIELD, WEAPON, ActorSnapshot, AgentSnapshot, InventoryItem, ItemStats,
    Position, Skill, WorldSnapshot,
)
from pvp_bridge.timers import CombatTimers
from pvp_bridge.utils import ItemCatalog, count_resources

# Item ids used across the tests
WHIP = 4151
DRAGON_CLAWS = 13652
RUNE_CROSSBOW = 9185
ANCIENT_STAFF = 4675
DRAGON_DEFENDER = 12954
BERSERKER_RING = 6737
DRAGON_BOLTS_E = 21944
SHARK = 385
KARAMBWAN = 3144
BREW_4 = 6685
RESTORE_4 = 3024
COMBAT_4 = 12695
RANGING_4 = 2444

AGENT_ID = 1
TARGET_ID = 2


def _make_catalog() -> ItemCatalog:
    names = {
        WHIP: "Abyssal whip",
        DRAGON_CLAWS: "Dragon claws",
        RUNE_CROSSBOW: "Rune crossbow",
        ANCIENT_STAFF: "Ancient staff",
        DRAGON_DEFENDER: "Dragon defender",
        BERSERKER_RING: "Berserker ring",
        DRAGON_BOLTS_E: "Dragon bolts (e)",
        SHARK: "Shark",
        KARAMBWAN: "Cooked karambwan",
        BREW_4: "Saradomin brew(4)",
        RESTORE_4: "Super restore(4)",
        COMBAT_4: "Super combat potion(4)",
        RANGING_4: "Ranging potion(4)",
    }
    stats = {
        WHIP: ItemStats(aslash=82, str=82, aspeed=4),
        DRAGON_CLAWS: ItemStats(astab=41, aslash=57, str=56, aspeed=4),
        RUNE_CROSSBOW: ItemStats(arange=90, aspeed=6),
        ANCIENT_STAFF: ItemStats(amagic=15, dmagic=15, aspeed=4),
        DRAGON_DEFENDER: ItemStats(astab=25, aslash=24, dslash=24, dmagic=-3, str=6),
        BERSERKER_RING: ItemStats(str=4),
    }
    return ItemCatalog(names, stats)


def _equipment(**slots) -> tuple:
    equipment = list(EMPTY_EQUIPMENT)
    for slot, item_id in slots.items():
        equipment[{"weapon": WEAPON, "shield": SHIELD, "ring": RING}[slot]] = item_id
    return tuple(equipment)


def _levels(value: int = 99) -> dict:
    return {skill: value for skill in Skill}


def _make_agent(**overrides) -> AgentSnapshot:
    fields = dict(
        actor_id=AGENT_ID,
        name="agent",
        position=Position(3200, 3200),
        health_ratio=30,
        health_scale=30,
        equipment=_equipment(weapon=WHIP, shield=DRAGON_DEFENDER),
        real_levels=_levels(),
        boosted_levels=_levels(),
        inventory=(
            InventoryItem(SHARK, 3),
            InventoryItem(KARAMBWAN, 1),
            InventoryItem(BREW_4),
            InventoryItem(RESTORE_4),
            InventoryItem(DRAGON_CLAWS),
            InventoryItem(RUNE_CROSSBOW),
        ),
    )
    fields.update(overrides)
    return AgentSnapshot(**fields)


def _make_target(**overrides) -> ActorSnapshot:
    fields = dict(
        actor_id=TARGET_ID,
        name="opponent",
        position=Position(3201, 3200),
        health_ratio=15,
        health_scale=30,
        equipment=_equipment(weapon=WHIP, shield=DRAGON_DEFENDER),
    )
    fields.update(overrides)
    return ActorSnapshot(**fields)


def _make_world(tick: int = 1, target=None, **agent_overrides) -> WorldSnapshot:
    return WorldSnapshot(tick=tick, agent=_make_agent(**agent_overrides), target=target)


def _make_context(catalog, world, proxy=None, timers=None, history=None,
                  fight_type=FightType.NORMAL) -> EncodingContext:
    proxy = proxy or OpponentProxy(catalog)
    if world.target is not None:
        proxy.rebind(world.target)
    extractor = GearFeatureExtractor(catalog)
    agent = world.agent
    features = extractor.extract(agent.equipment, [i.item_id for i in agent.inventory])
    resources = count_resources(agent.inventory, catalog)
    return EncodingContext(
        world=world,
        opponent=proxy,
        timers=timers or CombatTimers(),
        history=(history or CombatHistoryTracker()).observation_fields(),
        features=features,
        capabilities=build_capabilities(agent, features, extractor, resources),
        fight_type=fight_type,
    )


@pytest.fixture
def catalog() -> ItemCatalog:
    return _make_catalog()


class _LineHandler(socketserver.StreamRequestHandler):
    def handle(self):
        for line in self.rfile:
            if not line.strip():
                continue
            self.server.requests.append(json.loads(line))
            reply = self.server.reply
            if reply is None:
                return
            if isinstance(reply, str):
                reply = reply.encode("utf-8")
            self.wfile.write(reply + b"\n")
            self.wfile.flush()


class _DecisionServer(socketserver.ThreadingTCPServer):
    allow_reuse_address = True
    daemon_threads = True

    def __init__(self, reply):
        super().__init__(("127.0.0.1", 0), _LineHandler)
        self.reply = reply
        self.requests = []

    @property
    def port(self) -> int:
        return self.server_address[1]


@pytest.fixture
def decision_server():
    """Factory for a local line-JSON server answering every request with one fixed line."""
    servers = []

    def _start(reply: str = json.dumps({"action": [0] * 12})) -> _DecisionServer:
        server = _DecisionServer(reply)
        thread = threading.Thread(target=server.serve_forever, daemon=True)
        thread.start()
        servers.append(server)
        return server

    yield _start
    for server in servers:
        server.shutdown()
        server.server_close()
