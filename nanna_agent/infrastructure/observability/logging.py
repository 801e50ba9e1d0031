import structlog
import logging
import sys
from typing import Dict, Any, List, Optional
from datetime import datetime
from pydantic import BaseModel
import os

_configured = False

SHARED_PROCESSORS = [
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.filter_by_level,
    structlog.stdlib.add_logger_name,
    structlog.stdlib.add_log_level,
    structlog.processors.TimeStamper(fmt="iso"),
    structlog.processors.StackInfoRenderer(),
    structlog.processors.format_exc_info,
]


def setup_logging(
    log_level: str = "INFO",
    log_format: str = "json",
    service_name: str = "nanna-agent"
) -> bool:
    """Configure structured logging once per process.

    Returns True when this call configured logging and False when logging
    was already set up, in which case nothing changes.
    """
    global _configured

    if _configured:
        structlog.get_logger(__name__).debug("Logging already configured", service=service_name)
        return False

    level = getattr(logging, log_level.upper(), logging.INFO)
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)

    renderer = structlog.processors.JSONRenderer() if log_format == "json" else structlog.dev.ConsoleRenderer()
    processors: List[Any] = SHARED_PROCESSORS + [add_service_context, renderer]

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    structlog.contextvars.bind_contextvars(
        service=service_name,
        environment=os.getenv("ENVIRONMENT", "development"),
    )

    _configured = True
    return True


def logging_configured() -> bool:
    return _configured


def add_service_context(logger: logging.Logger, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Stamp entries with a timestamp and the current run id"""

    event_dict.setdefault("timestamp", datetime.utcnow().isoformat())

    # Bound by the agent loop for the duration of a run
    run_id = structlog.contextvars.get_contextvars().get("app_state_id")
    if run_id:
        event_dict["app_state_id"] = run_id

    return event_dict


class AgentLogger:
    """Typed events for the agent loop, the judge, the store and tools"""

    def __init__(self, name: str):
        self.logger = structlog.get_logger(name)

    def log_state_transition(
        self,
        from_state: str,
        to_state: str,
        iteration: int,
        duration_ms: Optional[float] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        self.logger.info(
            "state_transition",
            from_state=from_state,
            to_state=to_state,
            iteration=iteration,
            duration_ms=duration_ms,
            **(details or {})
        )

    def log_model_call(
        self,
        purpose: str,
        model: str,
        duration_ms: float,
        retry_count: int = 0,
        success: bool = True,
        error: Optional[str] = None
    ):
        log = self.logger.info if success else self.logger.warning
        log("model_call", purpose=purpose, model=model, duration_ms=duration_ms, retry_count=retry_count, error=error)

    def log_entity_mutation(self, action: str, entity_id: str, entity_type: str, version: Optional[int] = None):
        self.logger.info("entity_mutation", action=action, entity_id=entity_id, entity_type=entity_type, version=version)

    def log_tool_execution(
        self,
        tool_name: str,
        arguments: Dict[str, Any],
        output: Optional[Dict[str, Any]] = None,
        duration_ms: Optional[float] = None,
        success: bool = True,
        error: Optional[str] = None
    ):
        log = self.logger.info if success else self.logger.warning
        log(
            "tool_execution",
            tool_name=tool_name,
            arguments=arguments,
            output_keys=sorted(output) if output else [],
            duration_ms=duration_ms,
            error=error
        )


agent_logger = AgentLogger("nanna_agent")


class LatencyStats(BaseModel):
    """Running aggregate of one operation's latencies"""
    count: int = 0
    total_ms: float = 0.0
    min_ms: Optional[float] = None
    max_ms: float = 0.0

    def add(self, duration_ms: float):
        self.count += 1
        self.total_ms += duration_ms
        self.min_ms = duration_ms if self.min_ms is None else min(self.min_ms, duration_ms)
        self.max_ms = max(self.max_ms, duration_ms)

    def summary(self) -> Dict[str, float]:
        return {
            "count": self.count,
            "avg": self.total_ms / self.count if self.count else 0.0,
            "min": self.min_ms or 0.0,
            "max": self.max_ms,
        }


class MetricsCollector:
    """In-process latencies, counters and gauges; nothing is exported"""

    def __init__(self):
        self.latencies: Dict[str, LatencyStats] = {}
        self.counters: Dict[str, int] = {}
        self.gauges: Dict[str, float] = {}

    def record_latency(self, operation: str, duration_ms: float, tags: Optional[Dict[str, str]] = None):
        self.latencies.setdefault(operation, LatencyStats()).add(duration_ms)
        agent_logger.logger.debug("metric.latency", operation=operation, duration_ms=duration_ms, **(tags or {}))

    def increment_counter(self, name: str, value: int = 1, tags: Optional[Dict[str, str]] = None):
        self.counters[name] = self.counters.get(name, 0) + value
        agent_logger.logger.debug("metric.counter", name=name, value=value, **(tags or {}))

    def set_gauge(self, name: str, value: float, tags: Optional[Dict[str, str]] = None):
        self.gauges[name] = value
        agent_logger.logger.debug("metric.gauge", name=name, value=value, **(tags or {}))

    def counter(self, name: str) -> int:
        return self.counters.get(name, 0)

    def get_metrics_summary(self) -> Dict[str, Any]:
        summary: Dict[str, Any] = {f"latency.{op}": stats.summary() for op, stats in self.latencies.items()}
        summary.update(self.counters)
        summary.update(self.gauges)
        return summary

    def reset(self):
        self.latencies.clear()
        self.counters.clear()
        self.gauges.clear()


# Global metrics collector
metrics = MetricsCollector()
