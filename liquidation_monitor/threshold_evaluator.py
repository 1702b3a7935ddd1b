from typing import Iterable, Mapping, Union

import structlog

from .error_handling import PreconditionError
from .models import Position, HealthFactorSample, ThresholdEvaluation, AtRiskPosition
from .risk_engine import buffer_percent, classify_severity

logger = structlog.get_logger()


def evaluate(
    positions: Iterable[Position],
    health_factor_samples: Union[Mapping[str, HealthFactorSample], Iterable[HealthFactorSample]],
    threshold_percent: float,
) -> ThresholdEvaluation:
    """Classify positions against a buffer threshold.

    A position is at risk when its clamped buffer is strictly below the threshold;
    a buffer exactly at the threshold is not. Positions without a health-factor
    sample are skipped. With no samples at all this raises rather than reporting
    everything as safe.
    """
    if not isinstance(health_factor_samples, Mapping):
        health_factor_samples = {sample.position_id: sample for sample in health_factor_samples}

    if not health_factor_samples:
        raise PreconditionError("no health factors computed yet")

    at_risk = []
    evaluated = 0
    for position in positions:
        sample = health_factor_samples.get(position.id)
        if sample is None:
            continue

        evaluated += 1
        buffer = buffer_percent(sample.health_factor)
        if buffer.is_below(threshold_percent):
            at_risk.append(AtRiskPosition(
                position_id=position.id,
                buffer_percent=buffer.clamped,
                signed_buffer_percent=buffer.signed,
                health_factor=sample.health_factor.value,
                severity=classify_severity(buffer),
            ))

    if at_risk:
        logger.info("Positions below alert threshold",
                    threshold=threshold_percent,
                    at_risk_count=len(at_risk))

    return ThresholdEvaluation(
        threshold=threshold_percent,
        any_at_risk=bool(at_risk),
        evaluated_count=evaluated,
        at_risk_positions=at_risk,
    )
