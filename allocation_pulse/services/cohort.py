"""
Cohort Sizer Service.

Answers "how many entities were active on date d?", optionally restricted to
a set of segments. The answer is the per-capita denominator for every rate.

Activation convention:
    An entity counts on date d when

        active_from < d  AND  active_until > d

    Both inequalities are strict: an entity activated exactly on d is not yet
    counted, and one deactivated exactly on d is no longer counted. This
    differs from the usual half-open [from, until) reading and is kept as-is
    (see DESIGN.md, "Activation boundary").

Segment filters:
    - None: every entity, including those with a null segment
    - a label or collection of labels: only entities whose segment is one of
      them; null-segment entities never match a filter

Entity arrays are extracted once at construction and only read afterwards,
so one sizer can serve every bucket, segment and worker of a run.
"""

from typing import Dict, Hashable, Iterable, Optional, Tuple, Union
import logging

import numpy as np
import pandas as pd


# =============================================================================
# Constants
# =============================================================================

# Deactivation date given to entities that were never deactivated
ACTIVE_UNTIL_SENTINEL: pd.Timestamp = pd.Timestamp('2100-01-01')

SegmentFilter = Optional[Union[str, Iterable[str]]]

logger = logging.getLogger(__name__)


# =============================================================================
# Entity Preparation
# =============================================================================


def prepare_entities(entities: pd.DataFrame) -> pd.DataFrame:
    """
    Derive active_from / active_until calendar dates from entity timestamps.

    active_from is the activation date; active_until is the deactivation date,
    or ACTIVE_UNTIL_SENTINEL when the entity was never deactivated. Both are
    midnight timestamps in the same tz-naive local convention as event
    buckets.

    Args:
        entities: Normalized entity table (activated_at, deactivated_at).

    Returns:
        New DataFrame with active_from and active_until added.
    """
    out = entities.copy()
    out['active_from'] = pd.to_datetime(out['activated_at']).dt.normalize()
    out['active_until'] = (
        pd.to_datetime(out['deactivated_at']).dt.normalize().fillna(ACTIVE_UNTIL_SENTINEL)
    )

    inverted = out['active_until'] < out['active_from']
    if inverted.any():
        logger.warning(
            f"{int(inverted.sum())} entities are deactivated before they are activated; "
            "they are never counted as active"
        )
    return out


def _as_query_date(value) -> pd.Timestamp:
    day = pd.Timestamp(value)
    if day.tzinfo is not None:
        raise ValueError(f"Cohort queries take naive local dates, got {value!r}")
    return day.normalize()


# =============================================================================
# Cohort Sizer
# =============================================================================


class CohortSizer:
    """
    Count active entities for a date and optional segment filter.

    Example:
        >>> sizer = CohortSizer(entities)
        >>> sizer.count_active('2016-11-09')
        1523
        >>> sizer.count_active('2016-11-09', 'high')
        412
        >>> sizer.count_active('2016-11-09', ['low', 'mid'])
        988
    """

    def __init__(self, entities: pd.DataFrame):
        missing = {'active_from', 'active_until', 'segment'} - set(entities.columns)
        if missing:
            raise KeyError(f"CohortSizer needs columns {sorted(missing)}; run prepare_entities and annotate_entities first")

        self._from = entities['active_from'].to_numpy(dtype='datetime64[ns]')
        self._until = entities['active_until'].to_numpy(dtype='datetime64[ns]')
        self._segment = entities['segment'].reset_index(drop=True)
        self._masks: Dict[Tuple[Hashable, ...], np.ndarray] = {}

    def __len__(self) -> int:
        return len(self._from)

    @property
    def segments(self) -> Tuple[str, ...]:
        """Distinct non-null segment labels present in the population."""
        return tuple(sorted(self._segment.dropna().unique()))

    def _mask_for(self, segment_filter: SegmentFilter) -> Optional[np.ndarray]:
        if segment_filter is None:
            return None
        labels = (segment_filter,) if isinstance(segment_filter, str) else tuple(segment_filter)
        key = tuple(sorted(labels))
        if key not in self._masks:
            self._masks[key] = self._segment.isin(labels).to_numpy()
        return self._masks[key]

    def count_active(self, date, segment_filter: SegmentFilter = None) -> int:
        """
        Number of entities with active_from < date < active_until.

        Args:
            date: Query date (anything pd.Timestamp accepts); any time of day
                is truncated.
            segment_filter: None, one label, or several labels.

        Returns:
            Active entity count.
        """
        day = _as_query_date(date).to_datetime64()
        active = (self._from < day) & (self._until > day)
        mask = self._mask_for(segment_filter)
        if mask is not None:
            active &= mask
        return int(np.count_nonzero(active))

    def count_active_many(self, dates: Iterable, segment_filter: SegmentFilter = None) -> pd.Series:
        """
        count_active over a sequence of dates.

        Returns:
            Integer Series indexed by the normalized query dates.
        """
        days = [_as_query_date(d) for d in dates]
        counts = [self.count_active(d, segment_filter) for d in days]
        return pd.Series(counts, index=pd.DatetimeIndex(days, name='date'), name='active_population', dtype='int64')
