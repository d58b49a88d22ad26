"""
Guardrail Metrics for A/B Testing
=================================

Guardrails protect metrics that must not degrade while an experiment runs
(error rate, latency, revenue per visitor, ...). Each evaluation cycle checks
every enabled guardrail against the latest variant and control values and,
when a guardrail configured to ``stop`` or ``pause`` is violated, asks an
injected actuator to act on the experiment.

The evaluation itself is stateless. The actuator is the only place side
effects happen; how a test is actually stopped (status flag, traffic-splitter
API, ...) is the actuator's business.

Example Usage:
--------------
>>> from experiment_stats.diagnostics import guardrails
>>> from experiment_stats.config import GuardrailAction, GuardrailOperator
>>>
>>> rules = [
...     guardrails.Guardrail('error_rate', 0.02, GuardrailOperator.GREATER_THAN,
...                          action=GuardrailAction.STOP),
...     guardrails.Guardrail('revenue_per_visitor', 0, GuardrailOperator.WITHIN_PERCENT,
...                          tolerance_percent=5, action=GuardrailAction.WARN),
... ]
>>> report = guardrails.evaluate_guardrails(
...     rules,
...     current_metrics={'error_rate': 0.031, 'revenue_per_visitor': 4.80},
...     baseline_metrics={'error_rate': 0.012, 'revenue_per_visitor': 5.00},
... )
>>> print(report.should_stop, [v.guardrail.metric_name for v in report.violations])
True ['error_rate']
"""

import logging
import math
from dataclasses import dataclass
from typing import List, Mapping, Optional, Protocol, Sequence, Tuple, Union

from experiment_stats.config import GuardrailAction, GuardrailOperator
from experiment_stats.errors import (
    InsufficientDataError,
    InvalidConfigurationError,
    InvalidInputError,
)

logger = logging.getLogger(__name__)


class GuardrailActuator(Protocol):
    """Port through which violated guardrails act on a running experiment."""

    def stop(self, reason: str) -> None:
        ...

    def pause(self, reason: str) -> None:
        ...


@dataclass(frozen=True)
class Guardrail:
    """
    A protected metric and its safety rule.

    Parameters
    ----------
    metric_name : str
        Key looked up in the current and baseline metric mappings
    threshold : float
        Bound for ``greater_than`` / ``less_than``; unused by ``within_percent``
    operator : GuardrailOperator or str
        ``greater_than``: violated if current > threshold.
        ``less_than``: violated if current < threshold.
        ``within_percent``: violated if the relative deviation from baseline
        exceeds ``tolerance_percent``.
    tolerance_percent : float, optional
        Required for ``within_percent``
    action : GuardrailAction or str, default='warn'
        What a violation triggers: ``warn`` (flag only), ``pause`` or ``stop``
    enabled : bool, default=True
        Disabled guardrails are skipped entirely
    """

    metric_name: str
    threshold: float
    operator: Union[GuardrailOperator, str]
    tolerance_percent: Optional[float] = None
    action: Union[GuardrailAction, str] = GuardrailAction.WARN
    enabled: bool = True

    def __post_init__(self):
        try:
            operator = GuardrailOperator(self.operator)
        except ValueError:
            raise InvalidConfigurationError(
                f"Unknown guardrail operator {self.operator!r}. "
                f"Use one of {[o.value for o in GuardrailOperator]}"
            ) from None
        try:
            action = GuardrailAction(self.action)
        except ValueError:
            raise InvalidConfigurationError(
                f"Unknown guardrail action {self.action!r}. "
                f"Use one of {[a.value for a in GuardrailAction]}"
            ) from None
        object.__setattr__(self, 'operator', operator)
        object.__setattr__(self, 'action', action)

        if operator is GuardrailOperator.WITHIN_PERCENT:
            if self.tolerance_percent is None:
                raise InvalidConfigurationError(
                    f"Guardrail {self.metric_name!r}: within_percent requires tolerance_percent"
                )
            if self.tolerance_percent < 0:
                raise InvalidConfigurationError(
                    f"Guardrail {self.metric_name!r}: tolerance_percent must be non-negative"
                )


@dataclass(frozen=True)
class GuardrailEvaluation:
    guardrail: Guardrail
    current_value: float
    baseline_value: float
    violated: bool
    deviation_percent: float

    @property
    def reason(self) -> str:
        g = self.guardrail
        if g.operator is GuardrailOperator.WITHIN_PERCENT:
            return (
                f"Guardrail '{g.metric_name}' violated: {self.deviation_percent:.2f}% deviation "
                f"from baseline exceeds {g.tolerance_percent}% tolerance"
            )
        symbol = '>' if g.operator is GuardrailOperator.GREATER_THAN else '<'
        return (
            f"Guardrail '{g.metric_name}' violated: {self.current_value} {symbol} {g.threshold}"
        )


@dataclass(frozen=True)
class GuardrailReport:
    evaluations: Tuple[GuardrailEvaluation, ...]
    violations: Tuple[GuardrailEvaluation, ...]
    should_stop: bool
    should_pause: bool
    dispatched_actions: Tuple[Tuple[GuardrailAction, str], ...]

    @property
    def all_passed(self) -> bool:
        return not self.violations


def relative_deviation(current: float, baseline: float) -> float:
    """
    |current - baseline| / |baseline| · 100.

    A zero baseline gives ``inf`` when the current value moved off zero and
    0 when it did not.
    """
    if baseline == 0:
        return 0.0 if current == 0 else math.inf
    return abs(current - baseline) / abs(baseline) * 100


def check_guardrail(guardrail: Guardrail, current_value: float, baseline_value: float) -> GuardrailEvaluation:
    """Evaluate a single guardrail without any side effect."""
    deviation = relative_deviation(current_value, baseline_value)

    if guardrail.operator is GuardrailOperator.GREATER_THAN:
        violated = current_value > guardrail.threshold
    elif guardrail.operator is GuardrailOperator.LESS_THAN:
        violated = current_value < guardrail.threshold
    else:
        violated = deviation > guardrail.tolerance_percent

    return GuardrailEvaluation(
        guardrail=guardrail,
        current_value=current_value,
        baseline_value=baseline_value,
        violated=bool(violated),
        deviation_percent=deviation,
    )


def _lookup(metrics: Mapping[str, float], name: str, label: str) -> float:
    if name not in metrics or metrics[name] is None:
        raise InsufficientDataError(f"No {label} value for guardrail metric {name!r}")
    value = float(metrics[name])
    if not math.isfinite(value):
        raise InvalidInputError(f"Non-finite {label} value for guardrail metric {name!r}: {value}")
    return value


def evaluate_guardrails(
    guardrails: Sequence[Guardrail],
    current_metrics: Mapping[str, float],
    baseline_metrics: Mapping[str, float],
    actuator: Optional[GuardrailActuator] = None,
) -> GuardrailReport:
    """
    Run one evaluation cycle over all enabled guardrails.

    Parameters
    ----------
    guardrails : sequence of Guardrail
        Evaluated in the order given; actions are dispatched in that order
    current_metrics : mapping
        Latest variant value per metric name
    baseline_metrics : mapping
        Control value per metric name
    actuator : GuardrailActuator, optional
        Receives ``stop(reason)`` / ``pause(reason)`` once per violated
        stop/pause guardrail. Without one, required actions are only reported.

    Returns
    -------
    GuardrailReport

    Raises
    ------
    InsufficientDataError
        An enabled guardrail's metric is missing from either mapping

    Notes
    -----
    - All guardrails are evaluated before any action is dispatched, so a
      missing metric fails the cycle without side effects
    - Exceptions raised by the actuator propagate to the caller
    """
    evaluations: List[GuardrailEvaluation] = []
    for guardrail in guardrails:
        if not guardrail.enabled:
            logger.debug("Skipping disabled guardrail %r", guardrail.metric_name)
            continue
        current = _lookup(current_metrics, guardrail.metric_name, 'current')
        baseline = _lookup(baseline_metrics, guardrail.metric_name, 'baseline')
        evaluation = check_guardrail(guardrail, current, baseline)
        logger.debug(
            "Guardrail %r: current=%s baseline=%s deviation=%.2f%% violated=%s",
            guardrail.metric_name, current, baseline,
            evaluation.deviation_percent, evaluation.violated,
        )
        evaluations.append(evaluation)

    violations = [e for e in evaluations if e.violated]
    dispatched: List[Tuple[GuardrailAction, str]] = []

    for evaluation in violations:
        action = evaluation.guardrail.action
        reason = evaluation.reason
        logger.info("%s (action=%s)", reason, action.value)
        if action is GuardrailAction.WARN:
            continue
        if actuator is None:
            logger.warning("No actuator configured; %s not dispatched: %s", action.value, reason)
            continue
        if action is GuardrailAction.STOP:
            actuator.stop(reason)
        else:
            actuator.pause(reason)
        dispatched.append((action, reason))

    return GuardrailReport(
        evaluations=tuple(evaluations),
        violations=tuple(violations),
        should_stop=any(e.guardrail.action is GuardrailAction.STOP for e in violations),
        should_pause=any(e.guardrail.action is GuardrailAction.PAUSE for e in violations),
        dispatched_actions=tuple(dispatched),
    )


if __name__ == "__main__":
    print("=" * 80)
    print("Guardrail Evaluation Demo")
    print("=" * 80)

    class PrintingActuator:
        def stop(self, reason):
            print(f"  🛑 STOP: {reason}")

        def pause(self, reason):
            print(f"  ⏸️  PAUSE: {reason}")

    rules = [
        Guardrail('error_rate', 0.02, GuardrailOperator.GREATER_THAN, action=GuardrailAction.STOP),
        Guardrail('page_load_ms', 0, GuardrailOperator.WITHIN_PERCENT,
                  tolerance_percent=10, action=GuardrailAction.PAUSE),
        Guardrail('revenue_per_visitor', 4.5, GuardrailOperator.LESS_THAN, action=GuardrailAction.WARN),
    ]
    current = {'error_rate': 0.031, 'page_load_ms': 1350, 'revenue_per_visitor': 4.80}
    baseline = {'error_rate': 0.012, 'page_load_ms': 1200, 'revenue_per_visitor': 5.00}

    report = evaluate_guardrails(rules, current, baseline, actuator=PrintingActuator())
    for evaluation in report.evaluations:
        status = '❌' if evaluation.violated else '✅'
        print(f"{status} {evaluation.guardrail.metric_name}: {evaluation.current_value} "
              f"(baseline {evaluation.baseline_value}, {evaluation.deviation_percent:.1f}%)")
    print(f"\nShould stop: {report.should_stop}, should pause: {report.should_pause}")
