"""
Command-line front end for experiment_stats.

Reads an experiment snapshot (JSON), runs one analysis and prints the result
as JSON.

Usage:
    # Conversion significance
    experiment-stats significance snapshot.json

    # Revenue per visitor at 99% confidence
    experiment-stats revenue snapshot.json --confidence 0.99

    # Sample ratio mismatch from stdin
    cat allocations.json | experiment-stats srm -

Snapshot shapes:
    significance  {"control": {"visitors": 1000, "conversions": 100},
                   "variant": {"visitors": 1000, "conversions": 130}}
    revenue       {"control": {"visitors": n, "revenue": total, "revenue_variance": v}, ...}
                  or {"control": {"values": [...]}, "variant": {"values": [...]}}
    bootstrap     {"control": {"values": [...]}, "variant": {"values": [...]}}
                  resamples and seed come from settings n_resamples, random_state
    srm           {"variants": [{"id": "control", "expected_share_percent": 50,
                                 "observed_visitors": 520}, ...]}
    holm          {"alpha": 0.05, "comparisons": [{"label_a": "control",
                                   "label_b": "a", "p_value": 0.01}, ...]}
    novelty       {"minimum_days": 7, "daily": [{"date": "2024-01-01",
                   "control_visitors": ..., "control_conversions": ...,
                   "variant_visitors": ..., "variant_conversions": ...}, ...]}
    drift         {"dimensions": ["device_type", "country"], "time_key": "assigned_at",
                   "records": [{"assigned_at": "...", "device_type": "mobile"}, ...]}
                  or {"dimensions": [...], "early": [...], "late": [...]};
                  threshold comes from settings drift_significance_level

Any snapshot may carry a "settings" block (see ``AnalysisSettings``).
"""

import argparse
import dataclasses
import enum
import json
import logging
import sys
from typing import Any, Callable, Dict, List, Mapping, Optional

import numpy as np

from experiment_stats.advanced import multiple_testing
from experiment_stats.config import AnalysisSettings
from experiment_stats.core import bootstrap, frequentist, randomization
from experiment_stats.diagnostics import drift, novelty
from experiment_stats.errors import InvalidInputError

logger = logging.getLogger(__name__)

EXIT_INVALID_INPUT = 2


def _field(mapping: Mapping[str, Any], key: str, where: str) -> Any:
    if not isinstance(mapping, Mapping) or key not in mapping:
        raise InvalidInputError(f"Snapshot is missing '{key}' in {where}")
    return mapping[key]


def _number(mapping: Mapping[str, Any], key: str, where: str, cast=float):
    value = _field(mapping, key, where)
    if isinstance(value, bool):
        raise InvalidInputError(f"'{key}' in {where} must be a number, got {value!r}")
    try:
        return cast(value)
    except (TypeError, ValueError) as e:
        raise InvalidInputError(f"'{key}' in {where} must be a number, got {value!r}") from e


def _list(mapping: Mapping[str, Any], key: str, where: str) -> list:
    value = _field(mapping, key, where)
    if not isinstance(value, list):
        raise InvalidInputError(f"'{key}' in {where} must be a list")
    return value


def _values(mapping: Mapping[str, Any], key: str, where: str) -> np.ndarray:
    values = _list(mapping, key, where)
    if any(isinstance(v, bool) or not isinstance(v, (int, float)) for v in values):
        raise InvalidInputError(f"'{key}' in {where} must contain only numbers")
    return np.asarray(values, dtype=float)


def _settings(snapshot: Mapping[str, Any], args: argparse.Namespace) -> AnalysisSettings:
    settings = snapshot.get('settings') or {}
    if not isinstance(settings, Mapping):
        raise InvalidInputError("'settings' must be a JSON object")
    overrides = dict(settings)
    if args.confidence is not None:
        overrides['confidence_level'] = args.confidence
    return AnalysisSettings.from_mapping(overrides)


def _conversion(snapshot, key):
    group = _field(snapshot, key, 'snapshot')
    return frequentist.ConversionObservation(
        visitors=_number(group, 'visitors', key, int),
        conversions=_number(group, 'conversions', key, int),
    )


def _revenue(snapshot, key):
    group = _field(snapshot, key, 'snapshot')
    if isinstance(group, Mapping) and 'values' in group:
        return frequentist.RevenueObservation.from_samples(_values(group, 'values', key))
    return frequentist.RevenueObservation(
        visitors=_number(group, 'visitors', key, int),
        revenue=_number(group, 'revenue', key),
        revenue_variance=_number(group, 'revenue_variance', key),
    )


def run_significance(snapshot, settings):
    return frequentist.z_test_proportions(
        _conversion(snapshot, 'control'),
        _conversion(snapshot, 'variant'),
        settings.confidence_level,
    )


def run_revenue(snapshot, settings):
    return frequentist.welch_ttest(
        _revenue(snapshot, 'control'),
        _revenue(snapshot, 'variant'),
        settings.confidence_level,
    )


def run_bootstrap(snapshot, settings):
    """Percentile interval for the difference in means of raw per-visitor values."""
    return bootstrap.bootstrap_difference(
        _values(_field(snapshot, 'control', 'snapshot'), 'values', 'control'),
        _values(_field(snapshot, 'variant', 'snapshot'), 'values', 'variant'),
        confidence_level=settings.confidence_level,
        n_resamples=settings.n_resamples,
        random_state=settings.random_state,
    )


def run_srm(snapshot, settings):
    allocations = [
        randomization.VariantAllocation(
            variant_id=str(_field(item, 'id', 'variants')),
            expected_share_percent=_number(item, 'expected_share_percent', 'variants'),
            observed_visitors=_number(item, 'observed_visitors', 'variants', int),
        )
        for item in _list(snapshot, 'variants', 'snapshot')
    ]
    return randomization.srm_check(allocations)


def run_holm(snapshot, settings):
    comparisons = []
    for item in _list(snapshot, 'comparisons', 'snapshot'):
        p_value = _number(item, 'p_value', 'comparisons')
        if 'comparison' in item:
            comparisons.append(
                multiple_testing.PairwiseComparison.from_label(str(item['comparison']), p_value)
            )
        else:
            comparisons.append(multiple_testing.PairwiseComparison(
                str(_field(item, 'label_a', 'comparisons')),
                str(_field(item, 'label_b', 'comparisons')),
                p_value,
            ))
    alpha = _number(snapshot, 'alpha', 'snapshot') if 'alpha' in snapshot else settings.alpha
    return multiple_testing.holm_bonferroni(comparisons, alpha=alpha)


def run_novelty(snapshot, settings):
    points = [
        novelty.DailyLiftPoint(
            date=_field(day, 'date', 'daily'),
            control_visitors=_number(day, 'control_visitors', 'daily', int),
            control_conversions=_number(day, 'control_conversions', 'daily', int),
            variant_visitors=_number(day, 'variant_visitors', 'daily', int),
            variant_conversions=_number(day, 'variant_conversions', 'daily', int),
        )
        for day in _list(snapshot, 'daily', 'snapshot')
    ]
    if 'minimum_days' in snapshot:
        minimum_days = _number(snapshot, 'minimum_days', 'snapshot', int)
    else:
        minimum_days = settings.novelty_minimum_days
    return novelty.detect_novelty_effect(points, minimum_days=minimum_days)


def _records(snapshot, key):
    records = _list(snapshot, key, 'snapshot')
    if not all(isinstance(r, Mapping) for r in records):
        raise InvalidInputError(f"'{key}' must be a list of JSON objects")
    return records


def run_drift(snapshot, settings):
    """
    Either {"records": [...]} for a whole test, split into early and late
    quarters by "time_key", or explicit {"early": [...], "late": [...]}.
    """
    dimensions = [str(d) for d in _list(snapshot, 'dimensions', 'snapshot')]
    if 'records' in snapshot:
        return drift.detect_drift_over_test(
            _records(snapshot, 'records'),
            dimensions,
            time_key=str(snapshot.get('time_key', 'assigned_at')),
            significance_level=settings.drift_significance_level,
        )
    return drift.detect_drift(
        _records(snapshot, 'early'),
        _records(snapshot, 'late'),
        dimensions,
        significance_level=settings.drift_significance_level,
    )


COMMANDS: Dict[str, Callable[[Mapping[str, Any], AnalysisSettings], Any]] = {
    'significance': run_significance,
    'revenue': run_revenue,
    'bootstrap': run_bootstrap,
    'srm': run_srm,
    'holm': run_holm,
    'novelty': run_novelty,
    'drift': run_drift,
}


def to_jsonable(value: Any) -> Any:
    """Convert result dataclasses (and the enums/numpy values inside them) to JSON types."""
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {f.name: to_jsonable(getattr(value, f.name)) for f in dataclasses.fields(value)
                if f.repr}
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, Mapping):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    if isinstance(value, np.ndarray):
        return value.tolist()
    if isinstance(value, np.generic):
        return value.item()
    return value


def _load_snapshot(path: str) -> Mapping[str, Any]:
    if path == '-':
        snapshot = json.load(sys.stdin)
    else:
        with open(path) as f:
            snapshot = json.load(f)
    if not isinstance(snapshot, Mapping):
        raise InvalidInputError("Snapshot must be a JSON object")
    return snapshot


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='experiment-stats',
        description="Statistical analysis of A/B/n experiment snapshots",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  experiment-stats significance snapshot.json
  experiment-stats revenue snapshot.json --confidence 0.99
  experiment-stats holm comparisons.json --log-level DEBUG
  experiment-stats drift visitors.json
        """
    )
    parser.add_argument(
        'command',
        choices=sorted(COMMANDS),
        help='Analysis to run'
    )
    parser.add_argument(
        'snapshot',
        help="Path to the JSON snapshot, or '-' for stdin"
    )
    parser.add_argument(
        '--confidence',
        type=float,
        default=None,
        help='Confidence level: 0.90, 0.95 or 0.99 (default: 0.95)'
    )
    parser.add_argument(
        '--log-level',
        default='WARNING',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
        help='Logging level (default: WARNING)'
    )
    parser.add_argument(
        '--indent',
        type=int,
        default=2,
        help='JSON indentation (default: 2)'
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point."""
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
        stream=sys.stderr,
    )

    try:
        snapshot = _load_snapshot(args.snapshot)
        settings = _settings(snapshot, args)
        result = COMMANDS[args.command](snapshot, settings)
    except (ValueError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_INVALID_INPUT

    logger.debug("Command %s finished", args.command)
    print(json.dumps(to_jsonable(result), indent=args.indent))
    return 0


if __name__ == '__main__':
    sys.exit(main())
