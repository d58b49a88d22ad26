"""Unit tests for population drift detection."""

import pytest
import numpy as np
import pandas as pd
from experiment_stats.diagnostics import drift
from experiment_stats.diagnostics.drift import DriftSeverity
from experiment_stats.errors import (
    EmptyInputError,
    InsufficientDataError,
    InvalidConfigurationError,
    InvalidInputError,
)


def visitors(device_counts, country_counts=None):
    """Per-visitor records from category counts."""
    devices = [d for d, n in device_counts.items() for _ in range(n)]
    if country_counts is None:
        countries = ['US'] * len(devices)
    else:
        countries = [c for c, n in country_counts.items() for _ in range(n)]
    return pd.DataFrame({'device_type': devices, 'country': countries})


class TestCategoryCounts:
    """Tests for category frequency tables."""

    def test_missing_values_are_unknown(self):
        records = [
            {'device_type': 'mobile'},
            {'device_type': None},
            {'device_type': ''},
            {},
        ]
        counts = drift.category_counts(records, 'device_type')
        assert counts['mobile'] == 1
        assert counts[drift.UNKNOWN_CATEGORY] == 3

    def test_absent_dimension(self):
        counts = drift.category_counts([{'a': 1}, {'a': 2}], 'country')
        assert counts.to_dict() == {drift.UNKNOWN_CATEGORY: 2}

    def test_empty_records(self):
        with pytest.raises(EmptyInputError):
            drift.category_counts([], 'country')

    def test_whole_number_floats_match_ints(self):
        counts = drift.category_counts([{'plan': 1}, {'plan': 1.0}, {'plan': 2}], 'plan')
        assert counts.to_dict() == {'1': 2, '2': 1}

    def test_category_label(self):
        assert drift.category_label(3.0) == '3'
        assert drift.category_label(np.int64(4)) == '4'
        assert drift.category_label(2.5) == '2.5'
        assert drift.category_label(True) == 'True'
        assert drift.category_label('mobile') == 'mobile'
        assert drift.category_label(float('nan')) == drift.UNKNOWN_CATEGORY


class TestHomogeneityTest:
    """Tests for the chi-squared homogeneity test."""

    def test_identical_distributions(self):
        counts = pd.Series({'a': 50, 'b': 50})
        chi2, p_value = drift.homogeneity_test(counts, counts)
        assert chi2 == pytest.approx(0.0)
        assert p_value == pytest.approx(1.0)

    def test_matches_scipy_contingency(self):
        from scipy import stats

        early = pd.Series({'mobile': 500, 'desktop': 500})
        late = pd.Series({'mobile': 700, 'desktop': 300})
        chi2, p_value = drift.homogeneity_test(early, late)
        reference = stats.chi2_contingency([[500, 500], [700, 300]], correction=False)
        assert chi2 == pytest.approx(reference[0])
        assert p_value == pytest.approx(reference[1])

    def test_category_in_one_period_only(self):
        early = pd.Series({'a': 100, 'b': 100})
        late = pd.Series({'a': 100, 'b': 100, 'c': 50})
        chi2, p_value = drift.homogeneity_test(early, late)
        assert chi2 > 0
        assert p_value < 0.05

    def test_single_category(self):
        counts = pd.Series({'mobile': 10})
        assert drift.homogeneity_test(counts, pd.Series({'mobile': 30})) == (0.0, 1.0)


class TestDetectDrift:
    """Tests for the drift verdict."""

    def test_stable_population(self):
        early = visitors({'mobile': 500, 'desktop': 500}, {'US': 600, 'GB': 400})
        result = drift.detect_drift(early, early.copy(), ['device_type', 'country'])

        assert not result.detected
        assert result.severity is DriftSeverity.NONE
        assert result.overall_score == pytest.approx(0.0)
        assert result.recommendations == ()

    def test_one_dimension_is_medium(self):
        early = visitors({'mobile': 500, 'desktop': 500}, {'US': 600, 'GB': 400})
        late = visitors({'mobile': 700, 'desktop': 300}, {'US': 600, 'GB': 400})
        result = drift.detect_drift(early, late, ['device_type', 'country'])

        assert result.detected
        assert result.severity is DriftSeverity.MEDIUM
        device, country = result.per_dimension
        assert device.significant and not country.significant
        assert device.after == {'mobile': pytest.approx(0.7), 'desktop': pytest.approx(0.3)}
        assert abs(device.major_shifts[0].shift) == pytest.approx(20.0)
        assert "device_type" in result.message

    def test_two_dimensions_is_high(self):
        early = visitors({'mobile': 500, 'desktop': 500}, {'US': 600, 'GB': 400})
        late = visitors({'mobile': 700, 'desktop': 300}, {'US': 400, 'GB': 600})
        result = drift.detect_drift(early, late, ['device_type', 'country'])

        assert result.severity is DriftSeverity.HIGH
        assert result.recommendations[0].startswith("HIGH SEVERITY")
        assert any("shifted from 50.0% to" in r for r in result.recommendations)

    def test_low_severity_from_score(self):
        """No dimension significant but a high average score is low severity."""
        early = visitors({'mobile': 500, 'desktop': 500})
        late = visitors({'mobile': 540, 'desktop': 460})
        result = drift.detect_drift(early, late, ['device_type'])

        assert not result.detected
        assert 0.3 < result.overall_score
        assert result.severity is DriftSeverity.LOW

    def test_accepts_record_sequences(self):
        early = [{'device_type': 'mobile'}] * 50 + [{'device_type': 'desktop'}] * 50
        late = [{'device_type': 'mobile'}] * 90 + [{'device_type': 'desktop'}] * 10
        result = drift.detect_drift(early, late, ['device_type'])
        assert result.per_dimension[0].significant

    def test_empty_period(self):
        with pytest.raises(EmptyInputError):
            drift.detect_drift([], [{'device_type': 'mobile'}], ['device_type'])

    def test_no_dimensions(self):
        with pytest.raises(InvalidConfigurationError):
            drift.detect_drift([{'a': 1}], [{'a': 1}], [])

    def test_int_and_float_columns_are_the_same_population(self):
        """A missing value promotes the late column to float; labels must still line up."""
        early = pd.DataFrame({'plan': [1] * 60 + [2] * 40})
        late = pd.DataFrame({'plan': [1.0] * 60 + [2.0] * 39 + [np.nan]})
        result = drift.detect_drift(early, late, ['plan'])

        assert not result.detected
        plan = result.per_dimension[0]
        assert set(plan.before) == {'1', '2'}
        assert set(plan.after) == {'1', '2', drift.UNKNOWN_CATEGORY}

    def test_too_few_visitors(self):
        early = [{'device_type': 'mobile'}] * 30
        late = [{'device_type': 'desktop'}] * 30
        with pytest.raises(InsufficientDataError, match=r"60/100"):
            drift.detect_drift(early, late, ['device_type'])

    def test_minimum_samples_is_adjustable(self):
        early = [{'device_type': 'mobile'}] * 30
        late = [{'device_type': 'desktop'}] * 30
        result = drift.detect_drift(early, late, ['device_type'], minimum_samples=50)
        assert result.detected


class TestMajorShifts:
    """Tests for the category shift summary."""

    def test_only_shifts_above_one_point(self):
        shifts = drift.find_major_shifts(
            {'a': 0.5, 'b': 0.3, 'c': 0.2},
            {'a': 0.505, 'b': 0.2, 'd': 0.295},
        )
        assert [s.category for s in shifts] == ['d', 'c', 'b']
        assert shifts[0].before_percent == 0.0

    def test_at_most_five(self):
        before = {str(i): 0.1 for i in range(10)}
        after = {str(i): (0.19 if i < 5 else 0.01) for i in range(10)}
        assert len(drift.find_major_shifts(before, after)) == 5


class TestSplitPeriods:
    """Tests for early/late slicing."""

    def test_quarters_by_time(self):
        rng = np.random.default_rng(0)
        ts = pd.date_range('2024-01-01', periods=100, freq='h')
        df = pd.DataFrame({'assigned_at': ts, 'i': np.arange(100)}).iloc[rng.permutation(100)]

        early, late = drift.split_periods(df)
        assert list(early['i']) == list(range(25))
        assert list(late['i']) == list(range(75, 100))

    def test_missing_time_key(self):
        with pytest.raises(InvalidInputError):
            drift.split_periods([{'device_type': 'mobile'}])

    def test_overlapping_fractions(self):
        with pytest.raises(InvalidConfigurationError):
            drift.split_periods([{'assigned_at': '2024-01-01'}], early_fraction=0.6, late_fraction=0.6)

    def test_detect_drift_over_test(self):
        n = 400
        df = pd.DataFrame({
            'assigned_at': pd.date_range('2024-01-01', periods=n, freq='h'),
            'device_type': ['desktop'] * 200 + ['mobile'] * 200,
        })
        result = drift.detect_drift_over_test(df, ['device_type'])
        assert result.detected
        assert result.per_dimension[0].before == {'desktop': 1.0}

    def test_over_test_requires_twice_minimum(self):
        df = pd.DataFrame({
            'assigned_at': pd.date_range('2024-01-01', periods=150, freq='h'),
            'device_type': ['desktop'] * 75 + ['mobile'] * 75,
        })
        with pytest.raises(InsufficientDataError, match=r"150/200"):
            drift.detect_drift_over_test(df, ['device_type'])
        with pytest.raises(InsufficientDataError):
            drift.detect_time_drift(df)


class TestTimeDrift:
    """Tests for weekday and hour-of-day drift."""

    def test_weekday_and_hour_change(self):
        monday_morning = pd.date_range('2024-03-04 09:00', periods=200, freq='10s')
        saturday_night = pd.date_range('2024-03-09 21:00', periods=200, freq='10s')
        df = pd.DataFrame({'assigned_at': monday_morning.append(saturday_night)})

        result = drift.detect_time_drift(df)
        assert result.detected
        assert result.weekday_changed and result.hour_changed
        assert result.weekday.before == {'Mon': 1.0}
        assert result.hour.after == {'20-24': 1.0}
        assert result.message.startswith("Both")

    def test_no_time_drift(self):
        ts = pd.date_range('2024-03-04', periods=24 * 28, freq='h')
        result = drift.detect_time_drift(pd.DataFrame({'assigned_at': ts}))
        assert not result.detected
        assert result.message == "No significant time-based drift detected."
