"""
Baseline Normalizer Service.

Compares every bucketed rate with an explicit per-slot seasonal baseline:
the mean pre-pivot rate of buckets sharing the same weekday and time of day.

Slot keys:
    weekday      ISO weekday of bucket_start (Monday = 1 ... Sunday = 7)
    time_of_day  "HH:MM" of bucket_start, used purely as a grouping key

    For segmented rate records the segment is part of the key, so "Tuesday
    14:00 / high" is compared only against earlier "Tuesday 14:00 / high"
    buckets.

Historical records:
    bucket_start < pivot_at.normalize(), i.e. strictly before the pivot's
    calendar date. Buckets on the pivot date itself, before the pivot time,
    are not historical.

Null handling:
    - null rates (zero population) are left out of both the mean and
      baseline_samples
    - a slot with no historical precedent gets a null baseline, never zero
    - relative_rate is null whenever baseline_rate is null or zero
"""

from datetime import datetime
from typing import List, Tuple
import logging

import pandas as pd

from allocation_pulse.models import Period


# =============================================================================
# Constants
# =============================================================================

SLOT_COLUMNS: List[str] = ['weekday', 'time_of_day']

BASELINE_COLUMNS: List[str] = [
    'weekday',
    'time_of_day',
    'segment',
    'baseline_rate',
    'baseline_samples',
]

NORMALIZED_COLUMNS: List[str] = [
    'bucket_start',
    'segment',
    'event_count',
    'active_population',
    'rate',
    'weekday',
    'time_of_day',
    'period',
    'baseline_rate',
    'baseline_samples',
    'excess_rate',
    'relative_rate',
]

logger = logging.getLogger(__name__)


# =============================================================================
# Helpers
# =============================================================================


def add_slot_keys(records: pd.DataFrame) -> pd.DataFrame:
    """Add weekday (1-7) and time_of_day ("HH:MM") derived from bucket_start."""
    out = records.copy()
    starts = pd.to_datetime(out['bucket_start'])
    out['weekday'] = (starts.dt.dayofweek + 1).astype('int64')
    out['time_of_day'] = starts.dt.strftime('%H:%M')
    return out


def pivot_date(pivot_at: datetime) -> pd.Timestamp:
    """Calendar date that separates historical from post-pivot buckets."""
    return pd.Timestamp(pivot_at).normalize()


def _is_segmented(records: pd.DataFrame) -> bool:
    return 'segment' in records.columns and bool(records['segment'].notna().any())


def _baseline_keys(segmented: bool) -> List[str]:
    return SLOT_COLUMNS + ['segment'] if segmented else list(SLOT_COLUMNS)


# =============================================================================
# Baseline Computation
# =============================================================================


def compute_baseline(records: pd.DataFrame, pivot_at: datetime) -> pd.DataFrame:
    """
    Mean historical rate per slot.

    Args:
        records: Rate records with slot keys (see add_slot_keys).
        pivot_at: Pivot timestamp; its calendar date is the baseline cut.

    Returns:
        DataFrame with BASELINE_COLUMNS, one row per slot that has at least
        one historical bucket. baseline_samples counts the non-null rates
        averaged; a slot whose historical rates are all null has a null
        baseline_rate and zero samples.
    """
    segmented = _is_segmented(records)
    keys = _baseline_keys(segmented)

    historical = records[pd.to_datetime(records['bucket_start']) < pivot_date(pivot_at)]
    if historical.empty:
        logger.warning(f"No buckets before {pivot_date(pivot_at).date()}; every baseline is null")
        return pd.DataFrame({
            'weekday': pd.Series(dtype='int64'),
            'time_of_day': pd.Series(dtype=object),
            'segment': pd.Series(dtype=object),
            'baseline_rate': pd.Series(dtype=float),
            'baseline_samples': pd.Series(dtype='int64'),
        })

    baseline = (
        historical.groupby(keys, sort=True)
        .agg(baseline_rate=('rate', 'mean'), baseline_samples=('rate', 'count'))
        .reset_index()
    )
    baseline['baseline_samples'] = baseline['baseline_samples'].astype('int64')
    if not segmented:
        baseline['segment'] = None

    logger.info(
        f"Computed {len(baseline)} baseline slots from {len(historical)} historical buckets"
    )
    return baseline[BASELINE_COLUMNS]


def apply_baseline(
    records: pd.DataFrame,
    baseline: pd.DataFrame,
    pivot_at: datetime,
) -> pd.DataFrame:
    """
    Left-join slot baselines onto every record (pre and post pivot).

    Returns:
        DataFrame with NORMALIZED_COLUMNS in the input row order. Records
        whose slot has no baseline keep a null baseline_rate and zero
        baseline_samples.
    """
    segmented = _is_segmented(records)
    keys = _baseline_keys(segmented)

    lookup = baseline[keys + ['baseline_rate', 'baseline_samples']]
    joined = records.merge(lookup, on=keys, how='left', validate='many_to_one')
    joined['baseline_samples'] = joined['baseline_samples'].fillna(0).astype('int64')
    joined['baseline_rate'] = joined['baseline_rate'].astype(float)

    before_pivot = pd.to_datetime(joined['bucket_start']) < pivot_date(pivot_at)
    joined['period'] = before_pivot.map({True: Period.PRE.value, False: Period.POST.value})

    joined['excess_rate'] = joined['rate'] - joined['baseline_rate']
    base = joined['baseline_rate']
    joined['relative_rate'] = joined['rate'] / base.where(base != 0)

    missing = int(joined['baseline_rate'].isna().sum())
    if missing:
        logger.info(f"{missing} of {len(joined)} rate records have no baseline for their slot")

    return joined[NORMALIZED_COLUMNS]


def normalize_rates(records: pd.DataFrame, pivot_at: datetime) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """
    Slot keys, baseline and join in one call.

    Returns:
        (normalized records, baseline table)
    """
    keyed = add_slot_keys(records)
    baseline = compute_baseline(keyed, pivot_at)
    return apply_baseline(keyed, baseline, pivot_at), baseline
