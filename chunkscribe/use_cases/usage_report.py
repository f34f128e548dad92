"""UsageReporter — per-model accumulation of inference counters.

record() may be called from adapter threads as well as the event loop, so
the accumulator is guarded by a lock.
"""

import logging
import threading
from dataclasses import asdict, dataclass
from typing import Any, Dict

from chunkscribe.domain.models import TokenUsage
from chunkscribe.ports.usage import UsageSinkPort

logger = logging.getLogger(__name__)

# USD per million tokens.
MODEL_PRICING = {
    "gpt-4o": {"input": 2.50, "audio_input": 40.00, "cached": 1.25, "output": 10.00},
    "gpt-4o-mini": {"input": 0.15, "audio_input": 10.00, "cached": 0.075, "output": 0.60},
    "gpt-4o-audio-preview": {"input": 2.50, "audio_input": 40.00, "cached": 1.25, "output": 10.00},
    "gpt-4o-mini-audio-preview": {"input": 0.15, "audio_input": 10.00, "cached": 0.075, "output": 0.60},
}


def _pricing_for(model: str) -> Dict[str, float]:
    if model in MODEL_PRICING:
        return MODEL_PRICING[model]
    # Dated snapshots such as gpt-4o-mini-2024-07-18 price like their family.
    for family in sorted(MODEL_PRICING, key=len, reverse=True):
        if model.startswith(family):
            return MODEL_PRICING[family]
    return {}


@dataclass
class ModelUsage:
    model: str
    requests: int = 0
    prompt_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
    text_input_tokens: int = 0
    audio_input_tokens: int = 0
    cached_tokens: int = 0
    thoughts_tokens: int = 0

    def add(self, usage: TokenUsage) -> None:
        self.requests += 1
        self.prompt_tokens += usage.prompt_tokens
        self.output_tokens += usage.output_tokens
        self.total_tokens += usage.total_tokens or (usage.prompt_tokens + usage.output_tokens)
        self.text_input_tokens += usage.text_input_tokens
        self.audio_input_tokens += usage.audio_input_tokens
        self.cached_tokens += usage.cached_tokens
        self.thoughts_tokens += usage.thoughts_tokens

    def estimated_cost(self) -> float:
        pricing = _pricing_for(self.model)
        if not pricing:
            return 0.0
        text_input = self.text_input_tokens or max(0, self.prompt_tokens - self.audio_input_tokens)
        uncached = max(0, text_input - self.cached_tokens)
        cost = (
            uncached * pricing["input"]
            + self.cached_tokens * pricing["cached"]
            + self.audio_input_tokens * pricing["audio_input"]
            + (self.output_tokens + self.thoughts_tokens) * pricing["output"]
        )
        return cost / 1_000_000


class UsageReporter(UsageSinkPort):
    def __init__(self):
        self._lock = threading.Lock()
        self._models: Dict[str, ModelUsage] = {}

    def record(self, usage: TokenUsage) -> None:
        with self._lock:
            entry = self._models.get(usage.model)
            if entry is None:
                entry = self._models[usage.model] = ModelUsage(model=usage.model)
            entry.add(usage)

    def snapshot(self) -> Dict[str, ModelUsage]:
        with self._lock:
            return {name: ModelUsage(**asdict(entry)) for name, entry in self._models.items()}

    def total_cost(self) -> float:
        return sum(entry.estimated_cost() for entry in self.snapshot().values())

    def as_dict(self) -> Dict[str, Any]:
        models = self.snapshot()
        return {
            "models": {
                name: {**asdict(entry), "estimated_cost": round(entry.estimated_cost(), 6)}
                for name, entry in models.items()
            },
            "total_requests": sum(entry.requests for entry in models.values()),
            "total_tokens": sum(entry.total_tokens for entry in models.values()),
            "estimated_cost": round(sum(entry.estimated_cost() for entry in models.values()), 6),
        }

    def log_report(self) -> None:
        models = self.snapshot()
        if not models:
            logger.info("Usage report: no inference calls recorded")
            return
        logger.info("Usage report:")
        for name, entry in sorted(models.items()):
            logger.info(
                f"  {name}: {entry.requests} req, prompt={entry.prompt_tokens} "
                f"(audio={entry.audio_input_tokens}, cached={entry.cached_tokens}), "
                f"output={entry.output_tokens}, total={entry.total_tokens}, "
                f"~${entry.estimated_cost():.4f}"
            )
        logger.info(f"  Estimated total: ${sum(e.estimated_cost() for e in models.values()):.4f}")
