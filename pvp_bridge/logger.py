import logging
import json
import sys
from datetime import datetime
from typing import Any, Dict, Optional, Sequence

from .config import BridgeConfig
from .contract import OBS_IDS


class JsonFormatter(logging.Formatter):
    """
    Formatter that outputs JSON strings for structured logging.
    Useful for per-cycle bridge metrics and machine-parsable logs.
    """
    def format(self, record: logging.LogRecord) -> str:
        log_obj: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "name": record.name,
            "thread": record.threadName,
            "message": record.getMessage(),
        }

        # Add basic exception info if present
        if record.exc_info:
            log_obj["exception"] = self.formatException(record.exc_info)

        # Add extra fields if they exist in valid JSON types
        if hasattr(record, "tick"):
            log_obj["tick"] = record.tick  # type: ignore
        if hasattr(record, "metrics"):
            log_obj["metrics"] = record.metrics  # type: ignore
        if hasattr(record, "observation"):
            log_obj["observation"] = record.observation  # type: ignore

        return json.dumps(log_obj)


def configure_logging(level: int = logging.INFO, json_format: bool = False):
    """
    Configure the root logger.

    Args:
        level: Logging level (e.g., logging.INFO)
        json_format: If True, use JSON formatter. If False, use standard readable text.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # Remove existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)

    if json_format:
        formatter = JsonFormatter()
    else:
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - [%(threadName)s] %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)


def configure_bridge_logging(config: BridgeConfig):
    """
    Configure logging from the bridge settings.

    debug_mode turns on DEBUG so per-cycle observations and masks are
    emitted; log_json switches every record to JsonFormatter output, which
    carries the tick, metrics and observation extras as JSON fields.
    """
    level = logging.DEBUG if config.debug_mode else logging.INFO
    configure_logging(level=level, json_format=config.log_json)


def log_metrics(logger: logging.Logger, metrics: Dict[str, Any], step: Optional[int] = None):
    """
    Helper to log a dictionary of metrics as a structured log event.

    Args:
        logger: Logger instance to use
        metrics: Dictionary of metric name -> value
        step: Optional cycle index
    """
    metrics = dict(metrics)
    if step is not None:
        metrics["tick"] = step

    # JsonFormatter picks the dict up from extra; the text formatter shows it inline
    logger.info(f"Bridge metrics: {metrics}", extra={"metrics": metrics})


def log_observation(logger: logging.Logger, observation: Sequence[float], tick: int):
    """Log the non-zero observation fields by name at DEBUG."""
    if not logger.isEnabledFor(logging.DEBUG):
        return
    fields = {name: round(float(v), 3) for name, v in zip(OBS_IDS, observation) if v != 0.0}
    logger.debug(f"[tick={tick}] Observation ({len(fields)} non-zero): {fields}",
                 extra={"tick": tick, "observation": fields})
