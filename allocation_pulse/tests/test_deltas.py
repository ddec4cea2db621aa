"""
Test Module for the Direction/Distribution Aggregator.

Validates:
- delta = to_state - from_state, with increase / decrease / unchanged labels
- Symmetric half-open window around the pivot
- Per-bucket, per-segment summary statistics without any denominator
"""

from datetime import datetime

import pandas as pd
import pytest

from allocation_pulse.models import DeltaDirection
from allocation_pulse.services.deltas import (
    DELTA_COLUMNS,
    DISTRIBUTION_COLUMNS,
    classify_direction,
    delta_distribution,
    event_deltas,
)


PIVOT = datetime(2016, 10, 12, 19, 0)


def _events(rows) -> pd.DataFrame:
    """rows: (entity_id, segment, occurred_at, from_state, to_state)"""
    frame = pd.DataFrame(rows, columns=['entity_id', 'segment', 'occurred_at', 'from_state', 'to_state'])
    frame['occurred_at'] = pd.to_datetime(frame['occurred_at'])
    frame['segment'] = frame['segment'].astype(object).where(frame['segment'].notna(), None)
    return frame


class TestClassifyDirection:

    def test_labels(self):
        result = classify_direction(pd.Series([0.2, -0.1, 0.0]))
        assert result.tolist() == [
            DeltaDirection.INCREASE.value,
            DeltaDirection.DECREASE.value,
            DeltaDirection.UNCHANGED.value,
        ]


class TestEventDeltas:

    def test_signed_delta(self):
        deltas = event_deltas(_events([
            ('a', 'low', '2016-10-12 20:00', 0.6, 0.2),
            ('b', 'high', '2016-10-12 21:00', 0.3, 0.7),
        ]), PIVOT, 72)

        assert list(deltas.columns) == DELTA_COLUMNS
        assert deltas['delta'].tolist() == pytest.approx([-0.4, 0.4])
        assert deltas['direction'].tolist() == ['decrease', 'increase']

    def test_half_open_symmetric_window(self):
        deltas = event_deltas(_events([
            ('a', 'low', '2016-10-11 18:59', 0.5, 0.4),  # just before pivot - 24h
            ('b', 'low', '2016-10-11 19:00', 0.5, 0.4),  # pivot - 24h, included
            ('c', 'low', '2016-10-13 18:59', 0.5, 0.4),  # included
            ('d', 'low', '2016-10-13 19:00', 0.5, 0.4),  # pivot + 24h, excluded
        ]), PIVOT, 24)

        assert deltas['entity_id'].tolist() == ['b', 'c']

    def test_sorted_and_keeps_null_segment(self):
        deltas = event_deltas(_events([
            ('z', None, '2016-10-12 21:00', 0.5, 0.5),
            ('a', 'mid', '2016-10-12 20:00', 0.5, 0.6),
        ]), PIVOT, 72)

        assert deltas['entity_id'].tolist() == ['a', 'z']
        assert deltas.iloc[1]['segment'] is None
        assert deltas.iloc[1]['direction'] == 'unchanged'


class TestDeltaDistribution:

    @pytest.fixture
    def deltas(self) -> pd.DataFrame:
        return event_deltas(_events([
            ('a', 'low', '2016-10-13 10:00', 0.6, 0.2),
            ('b', 'low', '2016-10-13 10:15', 0.5, 0.5),
            ('c', 'high', '2016-10-13 10:30', 0.3, 0.7),
            ('d', 'mid', '2016-10-13 10:45', 0.5, 0.3),
            ('e', None, '2016-10-13 10:59', 0.5, 0.1),
            ('f', 'low', '2016-10-13 11:00', 0.5, 0.6),
        ]), PIVOT, 72)

    def test_overall_row(self, deltas: pd.DataFrame):
        dist = delta_distribution(deltas, 60, ['low', 'mid', 'high'])
        overall = dist[(dist['bucket_start'] == pd.Timestamp('2016-10-13 10:00')) & dist['segment'].isna()].iloc[0]

        assert overall['event_count'] == 5
        assert overall['min_delta'] == pytest.approx(-0.4)
        assert overall['max_delta'] == pytest.approx(0.4)
        assert overall['median_delta'] == pytest.approx(-0.2)
        assert overall['q1_delta'] == pytest.approx(-0.4)
        assert overall['q3_delta'] == pytest.approx(0.0)
        assert overall['mean_delta'] == pytest.approx(-0.12)
        assert (overall['increases'], overall['decreases'], overall['unchanged']) == (1, 3, 1)

    def test_segment_rows_exclude_null_segment(self, deltas: pd.DataFrame):
        dist = delta_distribution(deltas, 60, ['low', 'mid', 'high'])
        ten = dist[dist['bucket_start'] == pd.Timestamp('2016-10-13 10:00')]

        assert ten['segment'].tolist() == [None, 'low', 'mid', 'high']
        assert ten['event_count'].tolist() == [5, 2, 1, 1]

    def test_columns_and_ordering(self, deltas: pd.DataFrame):
        dist = delta_distribution(deltas, 60, ['low', 'mid', 'high'])

        assert list(dist.columns) == DISTRIBUTION_COLUMNS
        assert dist['bucket_start'].is_monotonic_increasing
        assert len(dist) == 6

    def test_low_segment_quartiles(self, deltas: pd.DataFrame):
        dist = delta_distribution(deltas, 60, ['low', 'mid', 'high'])
        low = dist[(dist['bucket_start'] == pd.Timestamp('2016-10-13 10:00')) & (dist['segment'] == 'low')].iloc[0]

        # deltas -0.4 and 0.0, linear interpolation
        assert low['q1_delta'] == pytest.approx(-0.3)
        assert low['median_delta'] == pytest.approx(-0.2)
        assert low['q3_delta'] == pytest.approx(-0.1)

    def test_empty(self):
        deltas = event_deltas(_events([]), PIVOT, 72)
        dist = delta_distribution(deltas)

        assert deltas.empty
        assert dist.empty
        assert list(dist.columns) == DISTRIBUTION_COLUMNS
