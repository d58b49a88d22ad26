"""
Customer Lifetime Value (LTV) by Variant
========================================

Tracks the long-term impact of an experiment beyond the immediate conversion:
mean cumulative order value per converter 30, 60 and 90 days after their
first conversion, with order counts, repurchase rates and bootstrap intervals.

Cohort membership and order history are fetched by the caller. A horizon is
only reported once every converter in the cohort has had that many days to
order; asking earlier yields ``None`` (aggregate analyses) or
``InsufficientCohortAgeError`` (``cohort_ltv``) instead of a misleadingly low
number.

Example Usage:
--------------
>>> from datetime import date
>>> from experiment_stats.decision import ltv
>>>
>>> customers = [
...     ltv.CustomerOrders('c1', 'control', date(2024, 1, 5), (
...         ltv.Order('o1', date(2024, 1, 5), 4_500),
...         ltv.Order('o2', date(2024, 2, 1), 3_000),
...     )),
...     ltv.CustomerOrders('c2', 'variant', date(2024, 1, 6), (
...         ltv.Order('o3', date(2024, 1, 6), 6_000),
...     )),
... ]
>>> comparison = ltv.compare_ltv(customers, 'control', 'variant', as_of=date(2024, 3, 1))
>>> print(comparison.lift[30], comparison.lift[90])   # 90 days not yet elapsed
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from experiment_stats.config import DEFAULT_RESAMPLES, LTV_HORIZONS, ConfidenceLevel
from experiment_stats.core import bootstrap, distributions
from experiment_stats.errors import (
    EmptyInputError,
    InsufficientCohortAgeError,
    InvalidConfigurationError,
    InvalidInputError,
)

logger = logging.getLogger(__name__)

# Lift change between shortest and longest horizon that counts as a different long-term story
LONG_TERM_LIFT_GAP = 10.0


@dataclass(frozen=True)
class Order:
    order_id: str
    order_date: Any
    amount_cents: int

    def __post_init__(self):
        if self.amount_cents < 0:
            raise InvalidInputError(f"Order {self.order_id!r} has negative amount")


@dataclass(frozen=True)
class CustomerOrders:
    """A converter, the variant they were assigned to, and their orders."""

    customer_id: str
    variant_id: str
    first_conversion_date: Any
    orders: Tuple[Order, ...] = ()


@dataclass(frozen=True)
class HorizonMetrics:
    horizon_days: int
    ltv: float
    order_count: float
    repurchase_rate: float
    average_order_value: float
    confidence_interval: Tuple[float, float]


@dataclass(frozen=True)
class LTVAnalysis:
    """Per-horizon metrics for one variant; unavailable horizons map to None."""

    variant_id: str
    is_control: bool
    cohort_size: int
    horizons: Dict[int, Optional[HorizonMetrics]] = field(default_factory=dict)

    def ltv(self, horizon_days: int) -> Optional[float]:
        metrics = self.horizons.get(horizon_days)
        return metrics.ltv if metrics is not None else None


@dataclass(frozen=True)
class LTVComparison:
    control: LTVAnalysis
    variant: LTVAnalysis
    lift: Dict[int, Optional[float]]
    p_values: Dict[int, Optional[float]]
    significant: Dict[int, Optional[bool]]
    long_term_different: bool
    message: str


@dataclass(frozen=True)
class LTVTrendPoint:
    day: int
    control_ltv: float
    variant_ltv: float
    lift: float


def _timestamp(value) -> pd.Timestamp:
    return pd.Timestamp(value)


def customer_value(customer: CustomerOrders, horizon_days: int) -> Tuple[float, int]:
    """Revenue (dollars) and order count within ``horizon_days`` of first conversion."""
    cutoff = _timestamp(customer.first_conversion_date) + pd.Timedelta(days=horizon_days)
    in_window = [o for o in customer.orders if _timestamp(o.order_date) <= cutoff]
    return sum(o.amount_cents for o in in_window) / 100, len(in_window)


def _cohort(customers: Sequence[CustomerOrders], variant_id: str) -> List[CustomerOrders]:
    return [c for c in customers if c.variant_id == variant_id]


def horizon_available(customers: Sequence[CustomerOrders], horizon_days: int, as_of) -> bool:
    """True when the most recent converter has had ``horizon_days`` to order."""
    if not customers:
        return False
    latest = max(_timestamp(c.first_conversion_date) for c in customers)
    return _timestamp(as_of) >= latest + pd.Timedelta(days=horizon_days)


def available_horizons(
    customers: Sequence[CustomerOrders],
    as_of,
    horizons: Sequence[int] = LTV_HORIZONS,
) -> List[int]:
    return [h for h in horizons if horizon_available(customers, h, as_of)]


def lift_percent(control: float, variant: float) -> float:
    return (variant - control) / control * 100 if control != 0 else 0.0


def cohort_ltv(
    customers: Sequence[CustomerOrders],
    horizon_days: int,
    as_of,
    confidence_level: Union[ConfidenceLevel, float] = 0.95,
    n_resamples: int = DEFAULT_RESAMPLES,
    random_state: distributions.RandomState = None,
) -> HorizonMetrics:
    """
    LTV metrics for one cohort at one horizon.

    Parameters
    ----------
    customers : sequence of CustomerOrders
        The cohort (one variant's converters)
    horizon_days : int
        Days after each customer's first conversion
    as_of : date-like
        "Today" for the availability check

    Returns
    -------
    HorizonMetrics
        Mean LTV in dollars, mean order count, share of converters with 2+
        orders, mean order value among customers who ordered, bootstrap CI

    Raises
    ------
    EmptyInputError
        Empty cohort
    InsufficientCohortAgeError
        ``as_of`` is earlier than the latest conversion plus ``horizon_days``
    """
    if horizon_days <= 0:
        raise InvalidConfigurationError("horizon_days must be positive")
    if not customers:
        raise EmptyInputError("Cohort has no customers")
    if not horizon_available(customers, horizon_days, as_of):
        raise InsufficientCohortAgeError(
            f"{horizon_days}-day LTV is not available yet as of {_timestamp(as_of).date()}"
        )

    values = [customer_value(c, horizon_days) for c in customers]
    revenue = np.array([v[0] for v in values], dtype=float)
    orders = np.array([v[1] for v in values], dtype=int)

    ordered = orders > 0
    aov = float((revenue[ordered] / orders[ordered]).mean()) if ordered.any() else 0.0
    ci = bootstrap.bootstrap_confidence_interval(
        revenue,
        confidence_level=confidence_level,
        n_resamples=n_resamples,
        random_state=random_state,
    )

    return HorizonMetrics(
        horizon_days=horizon_days,
        ltv=float(revenue.mean()),
        order_count=float(orders.mean()),
        repurchase_rate=float(np.mean(orders >= 2)),
        average_order_value=aov,
        confidence_interval=(ci.lower_bound, ci.upper_bound),
    )


def calculate_ltv(
    customers: Sequence[CustomerOrders],
    variant_id: str,
    as_of,
    horizons: Sequence[int] = LTV_HORIZONS,
    is_control: bool = False,
    confidence_level: Union[ConfidenceLevel, float] = 0.95,
    n_resamples: int = DEFAULT_RESAMPLES,
    random_state: distributions.RandomState = None,
) -> LTVAnalysis:
    """
    LTV analysis of one variant at every requested horizon.

    Horizons that have not elapsed for this cohort are reported as None.

    Raises
    ------
    EmptyInputError
        No customers belong to ``variant_id``
    """
    cohort = _cohort(customers, variant_id)
    if not cohort:
        raise EmptyInputError(f"No customers for variant {variant_id!r}")

    seeds = distributions.seed_sequence(random_state).spawn(len(horizons))
    metrics: Dict[int, Optional[HorizonMetrics]] = {}
    for horizon, seed in zip(horizons, seeds):
        if not horizon_available(cohort, horizon, as_of):
            logger.debug("%s: %d-day LTV not available yet", variant_id, horizon)
            metrics[horizon] = None
            continue
        metrics[horizon] = cohort_ltv(
            cohort, horizon, as_of,
            confidence_level=confidence_level,
            n_resamples=n_resamples,
            random_state=seed,
        )

    return LTVAnalysis(
        variant_id=variant_id,
        is_control=is_control,
        cohort_size=len(cohort),
        horizons=metrics,
    )


def _bootstrap_p_value(diff: bootstrap.BootstrapResult) -> float:
    """Two-sided p-value from the normal approximation to the bootstrap difference."""
    if diff.standard_error == 0:
        return 1.0 if diff.point_estimate == 0 else 0.0
    return 2 * distributions.normal_sf(abs(diff.point_estimate) / diff.standard_error)


def _ltv_message(lift: Dict[int, Optional[float]], significant: Dict[int, Optional[bool]],
                 long_term_different: bool) -> str:
    parts = []
    for horizon, value in lift.items():
        if value is None:
            parts.append(f"{horizon}-day LTV: not available yet")
            continue
        suffix = " (significant)" if significant[horizon] else ""
        parts.append(f"{horizon}-day LTV: {value:+.1f}%{suffix}")
    if long_term_different:
        parts.append("Note: Long-term impact differs from short-term. Consider waiting for more data.")
    return '. '.join(parts)


def compare_ltv(
    customers: Sequence[CustomerOrders],
    control_id: str,
    variant_id: str,
    as_of,
    horizons: Sequence[int] = LTV_HORIZONS,
    confidence_level: Union[ConfidenceLevel, float] = 0.95,
    n_resamples: int = DEFAULT_RESAMPLES,
    random_state: distributions.RandomState = None,
) -> LTVComparison:
    """
    Compare control and variant LTV at each horizon.

    Parameters
    ----------
    customers : sequence of CustomerOrders
        Converters of both variants
    control_id, variant_id : str
        Variant ids to compare
    as_of : date-like
        "Today" for the availability check

    Returns
    -------
    LTVComparison
        Per horizon: lift (%), bootstrap p-value and significance (interval
        of the difference excludes 0). All three are None for horizons not yet
        available in both cohorts.

    Notes
    -----
    ``long_term_different`` compares the shortest and longest available
    horizons: the lift changes sign or moves by more than 10 points.
    """
    seeds = distributions.seed_sequence(random_state).spawn(3)
    control = calculate_ltv(customers, control_id, as_of, horizons, True,
                            confidence_level, n_resamples, seeds[0])
    variant = calculate_ltv(customers, variant_id, as_of, horizons, False,
                            confidence_level, n_resamples, seeds[1])
    control_cohort = _cohort(customers, control_id)
    variant_cohort = _cohort(customers, variant_id)

    lift: Dict[int, Optional[float]] = {}
    p_values: Dict[int, Optional[float]] = {}
    significant: Dict[int, Optional[bool]] = {}

    diff_seeds = seeds[2].spawn(len(horizons))
    for horizon, seed in zip(horizons, diff_seeds):
        c_metrics, v_metrics = control.horizons[horizon], variant.horizons[horizon]
        if c_metrics is None or v_metrics is None:
            lift[horizon] = p_values[horizon] = significant[horizon] = None
            continue

        diff = bootstrap.bootstrap_difference(
            [customer_value(c, horizon)[0] for c in control_cohort],
            [customer_value(c, horizon)[0] for c in variant_cohort],
            confidence_level=confidence_level,
            n_resamples=n_resamples,
            random_state=seed,
        )
        lift[horizon] = lift_percent(c_metrics.ltv, v_metrics.ltv)
        p_values[horizon] = _bootstrap_p_value(diff)
        significant[horizon] = diff.excludes_zero

    observed = [h for h in horizons if lift[h] is not None]
    long_term_different = False
    if len(observed) >= 2:
        short, long = lift[min(observed)], lift[max(observed)]
        long_term_different = (
            np.sign(short) != np.sign(long) or abs(long - short) > LONG_TERM_LIFT_GAP
        )

    if long_term_different:
        logger.info("LTV lift for %s changes between short and long horizons", variant_id)

    return LTVComparison(
        control=control,
        variant=variant,
        lift=lift,
        p_values=p_values,
        significant=significant,
        long_term_different=bool(long_term_different),
        message=_ltv_message(lift, significant, long_term_different),
    )


def ltv_trend(
    customers: Sequence[CustomerOrders],
    control_id: str,
    variant_id: str,
    max_days: int = 90,
    interval: int = 7,
    as_of=None,
) -> List[LTVTrendPoint]:
    """
    Mean cumulative LTV of both variants every ``interval`` days up to ``max_days``.

    With ``as_of`` the trend stops at the last day available for both cohorts.
    """
    if interval <= 0 or max_days <= 0:
        raise InvalidConfigurationError("interval and max_days must be positive")
    control_cohort = _cohort(customers, control_id)
    variant_cohort = _cohort(customers, variant_id)
    if not control_cohort or not variant_cohort:
        raise EmptyInputError("Both variants need at least one customer")

    trend = []
    for day in range(interval, max_days + 1, interval):
        if as_of is not None and not (horizon_available(control_cohort, day, as_of)
                                      and horizon_available(variant_cohort, day, as_of)):
            break
        control_ltv = float(np.mean([customer_value(c, day)[0] for c in control_cohort]))
        variant_ltv = float(np.mean([customer_value(c, day)[0] for c in variant_cohort]))
        trend.append(LTVTrendPoint(day, control_ltv, variant_ltv, lift_percent(control_ltv, variant_ltv)))
    return trend


def customers_from_frame(
    orders: pd.DataFrame,
    customer_col: str = 'customer_id',
    variant_col: str = 'variant_id',
    conversion_col: str = 'first_conversion_date',
    order_id_col: str = 'order_id',
    order_date_col: str = 'order_date',
    amount_col: str = 'amount_cents',
) -> List[CustomerOrders]:
    """
    Build cohorts from one row per order.

    Customers with no orders yet may appear with a missing ``order_id``.
    """
    missing = {customer_col, variant_col, conversion_col, order_id_col,
               order_date_col, amount_col} - set(orders.columns)
    if missing:
        raise InvalidInputError(f"Order frame is missing columns: {sorted(missing)}")

    customers = []
    for (customer_id, variant_id), group in orders.groupby([customer_col, variant_col], sort=False):
        placed = group.dropna(subset=[order_id_col])
        customers.append(CustomerOrders(
            customer_id=str(customer_id),
            variant_id=str(variant_id),
            first_conversion_date=pd.Timestamp(group[conversion_col].min()),
            orders=tuple(
                Order(str(row[order_id_col]), pd.Timestamp(row[order_date_col]), int(row[amount_col]))
                for _, row in placed.iterrows()
            ),
        ))
    return customers


if __name__ == "__main__":
    print("=" * 80)
    print("LTV Analysis Demo")
    print("=" * 80)

    rng = np.random.default_rng(7)
    start = pd.Timestamp('2024-01-01')
    customers = []
    for i in range(400):
        variant = 'control' if i % 2 == 0 else 'variant'
        converted = start + pd.Timedelta(days=int(rng.integers(0, 14)))
        repeat_rate = 0.6 if variant == 'control' else 0.9
        n_orders = 1 + rng.poisson(repeat_rate)
        orders = tuple(
            Order(f"o{i}-{k}", converted + pd.Timedelta(days=int(rng.integers(0, 90)) if k else 0),
                  int(rng.gamma(2.0, 2_500)))
            for k in range(n_orders)
        )
        customers.append(CustomerOrders(f"c{i}", variant, converted, orders))

    as_of = start + pd.Timedelta(days=80)
    print(f"\nAvailable horizons as of {as_of.date()}: {available_horizons(customers, as_of)}")

    comparison = compare_ltv(customers, 'control', 'variant', as_of=as_of, random_state=42)
    for horizon in LTV_HORIZONS:
        c, v = comparison.control.ltv(horizon), comparison.variant.ltv(horizon)
        if c is None:
            print(f"  ⏳ {horizon}-day: not available yet")
            continue
        print(f"  {horizon}-day: control ${c:.2f} vs variant ${v:.2f} "
              f"({comparison.lift[horizon]:+.1f}%, p={comparison.p_values[horizon]:.4f})")
    print(f"\n{comparison.message}")
