"""Prometheus monitoring and metrics"""

import threading
from collections import Counter as Tally
from typing import Any, Dict, Optional

from prometheus_client import CollectorRegistry, Counter, Histogram, generate_latest

from voice_commands.core.logging import get_logger
from voice_commands.services.pipeline.base import ConfidenceLevel

logger = get_logger(__name__)


def confidence_bucket(confidence: float) -> str:
    """Named confidence level for distribution reports"""
    if confidence >= ConfidenceLevel.VERY_HIGH:
        return "very_high"
    if confidence >= ConfidenceLevel.HIGH:
        return "high"
    if confidence >= ConfidenceLevel.MEDIUM:
        return "medium"
    if confidence >= ConfidenceLevel.LOW:
        return "low"
    if confidence >= ConfidenceLevel.VERY_LOW:
        return "very_low"
    return "none"


class PipelineMetrics:
    """
    Metrics of one pipeline engine.

    Each instance owns its own CollectorRegistry so several engines can live
    in one process. A plain snapshot is kept next to the Prometheus series.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or CollectorRegistry()

        # Command processing metrics
        self.commands_processed_total = Counter(
            "voice_commands_processed_total",
            "Total voice commands processed",
            ["intent", "status"],
            registry=self.registry,
        )

        self.command_duration_seconds = Histogram(
            "voice_command_duration_seconds",
            "Voice command processing duration in seconds",
            ["intent"],
            registry=self.registry,
        )

        self.step_duration_seconds = Histogram(
            "voice_pipeline_step_duration_seconds",
            "Pipeline stage duration in seconds",
            ["step"],
            registry=self.registry,
        )

        # Cache metrics
        self.cache_hits_total = Counter(
            "voice_cache_hits",
            "Result cache hits",
            registry=self.registry,
        )

        self.cache_misses_total = Counter(
            "voice_cache_misses",
            "Result cache misses",
            registry=self.registry,
        )

        self._lock = threading.Lock()
        self._reset_snapshot()

    def _reset_snapshot(self) -> None:
        self._total = 0
        self._successful = 0
        self._total_time_ms = 0.0
        self._total_confidence = 0.0
        self._cache_hits = 0
        self._cache_misses = 0
        self._confidence = Tally()
        self._intents = Tally()

    def track_command(
        self,
        intent: Optional[str],
        success: bool,
        duration_ms: float,
        confidence: float,
    ) -> None:
        """Record one processed command"""
        label = intent or "unknown"
        status = "success" if success else "failure"

        self.commands_processed_total.labels(intent=label, status=status).inc()
        self.command_duration_seconds.labels(intent=label).observe(duration_ms / 1000.0)

        with self._lock:
            self._total += 1
            if success:
                self._successful += 1
            self._total_time_ms += duration_ms
            self._total_confidence += confidence
            self._confidence[confidence_bucket(confidence)] += 1
            self._intents[label] += 1

    def track_step(self, step: str, duration_seconds: float) -> None:
        self.step_duration_seconds.labels(step=step).observe(duration_seconds)

    def track_cache(self, hit: bool) -> None:
        if hit:
            self.cache_hits_total.inc()
        else:
            self.cache_misses_total.inc()

        with self._lock:
            if hit:
                self._cache_hits += 1
            else:
                self._cache_misses += 1

    def snapshot(self) -> Dict[str, Any]:
        """
        Plain performance summary

        Returns:
            Totals, success rate, average time and confidence,
            confidence and intent distributions
        """
        with self._lock:
            total = self._total
            lookups = self._cache_hits + self._cache_misses
            return {
                "total_commands": total,
                "successful_commands": self._successful,
                "failed_commands": total - self._successful,
                "success_rate": self._successful / total if total else 0.0,
                "average_processing_time_ms": self._total_time_ms / total if total else 0.0,
                "average_confidence": self._total_confidence / total if total else 0.0,
                "cache_hits": self._cache_hits,
                "cache_misses": self._cache_misses,
                "cache_hit_rate": self._cache_hits / lookups if lookups else 0.0,
                "confidence_distribution": dict(self._confidence),
                "intent_distribution": dict(self._intents),
            }

    def reset(self) -> None:
        """Reset the plain snapshot; Prometheus counters stay monotonic"""
        with self._lock:
            self._reset_snapshot()

    def render(self) -> bytes:
        """Prometheus exposition text"""
        return generate_latest(self.registry)
