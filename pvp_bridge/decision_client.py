"""
Client for the external decision service.

Line-delimited JSON over one persistent TCP connection. Every failure mode
(timeout, refused connection, closed stream, malformed reply) degrades to
the all-no-op action so callers never need an exception path.
"""

import json
import logging
import math
import socket
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Dict, List, Optional, Sequence

from .config import DEFAULT_DECISION_CONFIG, DecisionServiceConfig
from .contract import HEAD_COUNT, safe_default_action

logger = logging.getLogger(__name__)


class DecisionClient:
    """
    Synchronous request/response with a single worker thread for async use.

    The socket is only touched by whichever thread runs request_action; in
    the bridge that is always the worker behind request_action_async.
    """

    def __init__(self, config: DecisionServiceConfig = DEFAULT_DECISION_CONFIG):
        self.config = config
        self._sock: Optional[socket.socket] = None
        self._reader = None
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="decision-client")
        self._metrics_lock = threading.Lock()

        self.total_requests = 0
        self.failed_requests = 0
        self.total_latency_ms = 0.0
        self.last_latency_ms = 0.0

    @property
    def is_connected(self) -> bool:
        return self._sock is not None

    def connect(self) -> bool:
        """Open the connection. Returns False (and logs) on failure."""
        self.disconnect()
        address = (self.config.host, self.config.port)
        try:
            sock = socket.create_connection(address, timeout=self.config.connect_timeout_s)
        except OSError as e:
            logger.error(f"Failed to connect to decision service at {address[0]}:{address[1]}: {e}")
            return False
        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        sock.settimeout(self.config.read_timeout_s)
        self._sock = sock
        self._reader = sock.makefile('r', encoding='utf-8', newline='\n')
        logger.info(f"Connected to decision service at {address[0]}:{address[1]}")
        return True

    def disconnect(self):
        if self._reader is not None:
            try:
                self._reader.close()
            except OSError as e:
                logger.debug(f"Error closing reader: {e}")
            self._reader = None
        if self._sock is not None:
            try:
                self._sock.close()
            except OSError as e:
                logger.debug(f"Error closing socket: {e}")
            self._sock = None

    # =========================================================================
    # Wire format
    # =========================================================================

    def build_request(self, observation: Sequence[float], mask: Sequence[Sequence[bool]]) -> Dict[str, Any]:
        return {
            "model": self.config.model,
            "actionMasks": [[bool(v) for v in row] for row in mask],
            # Outer list leaves room for frame stacking.
            "obs": [[float(v) for v in observation]],
            "deterministic": self.config.deterministic,
            "returnLogProb": False,
            "returnEntropy": False,
            "returnValue": False,
            "returnProbs": False,
            "extensions": [],
        }

    @staticmethod
    def parse_response(line: str) -> Optional[List[int]]:
        """The action from one response line, or None if it breaks the contract."""
        try:
            payload = json.loads(line)
        except json.JSONDecodeError as e:
            logger.error(f"Malformed decision response: {e}")
            return None
        action = payload.get("action") if isinstance(payload, dict) else None
        if not isinstance(action, list) or len(action) != HEAD_COUNT:
            logger.error(f"Decision response has wrong arity: {action!r}")
            return None
        parsed = []
        for value in action:
            if (isinstance(value, bool) or not isinstance(value, (int, float))
                    or not math.isfinite(value) or int(value) != value):
                logger.error(f"Decision response has non-integer entry: {value!r}")
                return None
            parsed.append(int(value))
        return parsed

    # =========================================================================
    # Requests
    # =========================================================================

    def request_action(self, tick: int, reward: float, observation: Sequence[float],
                       mask: Sequence[Sequence[bool]]) -> List[int]:
        """
        Ask the service for one action, blocking up to the read timeout.

        Args:
            tick: Cycle index the snapshot was taken on
            reward: Reward signal for the previous action (logged, not sent)
            observation: Flat observation vector
            mask: Per-head validity rows

        Returns:
            One index per head; all no-ops on any failure
        """
        if not self.is_connected and not self.connect():
            self._record(failed=True)
            return safe_default_action()

        payload = json.dumps(self.build_request(observation, mask)) + "\n"
        start = time.perf_counter()
        try:
            self._sock.sendall(payload.encode('utf-8'))
            line = self._reader.readline()
        except socket.timeout:
            logger.warning(f"[tick={tick}] Decision request timed out after {self.config.read_timeout_s}s")
            self.disconnect()
            self._record(failed=True)
            return safe_default_action()
        except UnicodeDecodeError as e:
            logger.error(f"[tick={tick}] Decision response is not valid UTF-8: {e}")
            self.disconnect()
            self._record(failed=True)
            return safe_default_action()
        except OSError as e:
            logger.error(f"[tick={tick}] Decision request failed: {e}")
            self.disconnect()
            self._record(failed=True)
            return safe_default_action()

        latency_ms = (time.perf_counter() - start) * 1000.0
        if not line:
            logger.error(f"[tick={tick}] Decision service closed the connection")
            self.disconnect()
            self._record(failed=True)
            return safe_default_action()

        action = self.parse_response(line)
        if action is None:
            self._record(failed=True)
            return safe_default_action()

        self._record(failed=False, latency_ms=latency_ms)
        if latency_ms > self.config.high_latency_ms:
            logger.warning(f"[tick={tick}] High decision latency: {latency_ms:.1f}ms")
        logger.debug(f"[tick={tick}] reward={reward:.3f} action={action} ({latency_ms:.1f}ms)")
        return action

    def request_action_async(self, tick: int, reward: float, observation: Sequence[float],
                             mask: Sequence[Sequence[bool]]) -> "Future[List[int]]":
        """Submit a request to the worker. Inputs are copied before hand-off."""
        obs_copy = tuple(float(v) for v in observation)
        mask_copy = tuple(tuple(bool(v) for v in row) for row in mask)
        return self._executor.submit(self.request_action, tick, reward, obs_copy, mask_copy)

    def connect_async(self) -> "Future[bool]":
        """Open the connection on the worker so the socket never leaves it."""
        return self._executor.submit(self.connect)

    def shutdown(self):
        self._executor.shutdown(wait=True, cancel_futures=True)
        self.disconnect()
        logger.info(f"Decision client shut down: {self.metrics()}")

    # =========================================================================
    # Metrics
    # =========================================================================

    def _record(self, failed: bool, latency_ms: Optional[float] = None):
        with self._metrics_lock:
            self.total_requests += 1
            if failed:
                self.failed_requests += 1
            if latency_ms is not None:
                self.total_latency_ms += latency_ms
                self.last_latency_ms = latency_ms

    @property
    def average_latency_ms(self) -> float:
        with self._metrics_lock:
            answered = self.total_requests - self.failed_requests
            return self.total_latency_ms / answered if answered > 0 else 0.0

    def metrics(self) -> Dict[str, Any]:
        avg = self.average_latency_ms
        with self._metrics_lock:
            return {
                "total_requests": self.total_requests,
                "failed_requests": self.failed_requests,
                "avg_latency_ms": round(avg, 2),
                "last_latency_ms": round(self.last_latency_ms, 2),
                "connected": self.is_connected,
            }
