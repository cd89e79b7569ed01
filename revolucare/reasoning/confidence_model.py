"""Confidence Model - deterministic aggregation of partial confidence signals."""
from typing import Dict, Iterable, List, Optional, Tuple

from revolucare.models.confidence import ConfidenceScore, ConfidenceSignal
from revolucare.config.logging_config import get_logger

logger = get_logger(__name__)

NO_SIGNALS_FACTOR = "no confidence signals"
MAX_FACTORS = 3

# Weights by signal name. Signals not listed fall back to their own weight.
DEFAULT_SIGNAL_WEIGHTS: Dict[str, float] = {
    "model_confidence": 0.5,
    "fact_confidence": 0.3,
    "plan_completeness": 0.2,
    "extraction_confidence": 0.6,
    "field_coverage": 0.25,
    "document_quality": 0.15,
}


def normalize_signal_value(value: float) -> float:
    """Normalize a probability or percentage to [0, 1]."""
    value = float(value)
    if value > 1.0:
        value = value / 100.0
    return min(max(value, 0.0), 1.0)


class ConfidenceModel:
    """
    Weighted-mean confidence aggregation.
    NO LLM involvement - pure calculation.

    score = 100 * sum(weight_i * value_i) / sum(weight_i)

    Factors are the (up to three) signals contributing most to the score,
    ordered by weight * value descending, ties broken by input order.
    """

    def __init__(self, weights: Optional[Dict[str, float]] = None):
        """
        Initialize the Confidence Model.

        Args:
            weights: Per-signal-name weights (defaults to DEFAULT_SIGNAL_WEIGHTS)
        """
        self.weights = dict(DEFAULT_SIGNAL_WEIGHTS if weights is None else weights)
        if any(w < 0 for w in self.weights.values()):
            raise ValueError("Confidence weights must be non-negative")

    def _weight_for(self, signal: ConfidenceSignal) -> float:
        weight = self.weights.get(signal.name, signal.weight)
        return max(float(weight), 0.0)

    def score(self, signals: Iterable[ConfidenceSignal]) -> ConfidenceScore:
        """
        Aggregate raw signals into a ConfidenceScore.

        Args:
            signals: Partial confidence signals

        Returns:
            ConfidenceScore with score in [0, 100], level and factors
        """
        weighted: List[Tuple[int, ConfidenceSignal, float, float]] = []
        for index, signal in enumerate(signals):
            weighted.append(
                (index, signal, self._weight_for(signal), normalize_signal_value(signal.value))
            )

        total_weight = sum(w for _, _, w, _ in weighted)
        if not weighted or total_weight <= 0:
            return ConfidenceScore.from_score(0.0, [NO_SIGNALS_FACTOR])

        aggregate = sum(w * v for _, _, w, v in weighted) / total_weight
        score = round(aggregate * 100.0, 1)

        ranked = sorted(weighted, key=lambda item: (-(item[2] * item[3]), item[0]))
        factors = [
            f"{signal.name}: {round(value * 100)}%"
            for _, signal, _, value in ranked[:MAX_FACTORS]
        ]

        logger.debug("Confidence scored", score=score, signals=len(weighted))
        return ConfidenceScore.from_score(score, factors)
