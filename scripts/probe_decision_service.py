#! /usr/bin/env python3
"""
Probe a running decision service.
Sends neutral observations with a permissive mask and reports latency and
how many replies were usable.
"""

import argparse
import logging
import sys
from pathlib import Path

import numpy as np
from tqdm import tqdm

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from pvp_bridge.config import BridgeConfig, load_bridge_config
from pvp_bridge.contract import ACTION_HEAD_SIZES, OBS_INDEX, OBS_SIZE, OPPONENT_NEUTRAL_DEFAULTS
from pvp_bridge.decision_client import DecisionClient
from pvp_bridge.logger import configure_bridge_logging, log_metrics

logger = logging.getLogger(__name__)


def parse_args():
    parser = argparse.ArgumentParser(description="Probe the PvP decision service")
    parser.add_argument("--config", type=str, default=None,
                        help="Bridge config JSON; its decision and logging sections are used")
    parser.add_argument("--host", type=str, default=None, help="Override service host")
    parser.add_argument("--port", type=int, default=None, help="Override service port")
    parser.add_argument("--requests", type=int, default=50, help="Number of requests to send")
    parser.add_argument("--noop-only", action="store_true",
                        help="Mask everything except the no-op option of each head")
    parser.add_argument("--json-logs", action="store_true", help="Structured JSON logs")
    return parser.parse_args()


def neutral_observation() -> np.ndarray:
    obs = np.zeros(OBS_SIZE, dtype=np.float32)
    for name, value in OPPONENT_NEUTRAL_DEFAULTS.items():
        obs[OBS_INDEX[name]] = value
    return obs


def probe_mask(noop_only: bool):
    return [[i == 0 or not noop_only for i in range(size)] for size in ACTION_HEAD_SIZES]


def main():
    args = parse_args()
    bridge_config = load_bridge_config(Path(args.config)) if args.config else BridgeConfig()
    if args.json_logs:
        bridge_config = bridge_config.model_copy(update={"log_json": True})
    configure_bridge_logging(bridge_config)

    config = bridge_config.decision
    overrides = {k: v for k, v in (("host", args.host), ("port", args.port)) if v is not None}
    if overrides:
        config = config.model_copy(update=overrides)

    client = DecisionClient(config)
    if not client.connect():
        logger.error("Decision service unreachable, nothing to probe")
        return 1

    obs = neutral_observation()
    mask = probe_mask(args.noop_only)
    latencies = []
    non_noop = 0
    for tick in tqdm(range(args.requests), desc="Probing"):
        failed_before = client.failed_requests
        action = client.request_action(tick, 0.0, obs, mask)
        if client.failed_requests == failed_before:
            latencies.append(client.last_latency_ms)
        if any(action):
            non_noop += 1
    client.shutdown()

    metrics = client.metrics()
    metrics["non_noop_actions"] = non_noop
    if latencies:
        metrics["p50_latency_ms"] = round(float(np.percentile(latencies, 50)), 2)
        metrics["p95_latency_ms"] = round(float(np.percentile(latencies, 95)), 2)
    log_metrics(logger, metrics)
    return 0 if latencies else 1


if __name__ == "__main__":
    sys.exit(main())
