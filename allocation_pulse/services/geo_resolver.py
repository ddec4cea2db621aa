"""
Geographic Resolver Service.

Collapses the many-to-many zip <-> region crosswalk plus the region-level lean
attribute into one scalar per zip code (ZipLean), then discretizes that scalar
into ordered segments.

Algorithm Overview:
    1. Inner join ZipMapping to GeoUnit on region_id. Regions without a lean,
       and mapping rows whose region is unknown, drop out of the join.
    2. Group by zip_code: sample_count = matched rows, mean_lean = arithmetic
       mean of matched leans. Every matched row weighs the same.
    3. Bin mean_lean against ascending cut points with closed-left bins
       [-inf, c1), [c1, c2), ..., [cn, +inf). A value exactly on a cut point
       lands in the upper bin (0.40 -> mid, 0.60 -> high with default cuts).

Two schemes are applied:
    - fine (5 levels, display): lean_band
    - coarse (3 levels, every rate comparison): segment

A zip that is absent from the crosswalk, or whose regions are all unmatched,
has no ZipLean row and resolves to None. Callers must keep None distinct from
every named segment.

Usage:
    from allocation_pulse.services.geo_resolver import build_zip_lean, SegmentResolver

    zip_lean = build_zip_lean(geo_units, zip_mapping)
    zip_lean = assign_segments(zip_lean, params.fine_scheme, params.coarse_scheme)
    resolver = SegmentResolver(zip_lean)
    resolver.segment('02139')
"""

from typing import Dict, List, Optional
import logging

import numpy as np
import pandas as pd

from allocation_pulse.models import SegmentScheme


# =============================================================================
# Constants
# =============================================================================

ZIP_LEAN_COLUMNS: List[str] = ['zip_code', 'sample_count', 'mean_lean']

SEGMENT_COLUMNS: List[str] = ['mean_lean', 'lean_band', 'segment']

logger = logging.getLogger(__name__)


# =============================================================================
# ZipLean Construction
# =============================================================================


def build_zip_lean(geo_units: pd.DataFrame, zip_mapping: pd.DataFrame) -> pd.DataFrame:
    """
    Aggregate region leans to one row per zip code.

    Args:
        geo_units: Normalized geo_units table (region_id, lean).
        zip_mapping: Normalized zip_mapping table (zip_code, region_id).

    Returns:
        DataFrame with columns zip_code, sample_count, mean_lean sorted by
        zip_code. Zips with zero matched regions are excluded, not zero-filled.
    """
    units = geo_units.dropna(subset=['region_id', 'lean'])[['region_id', 'lean']]
    mapping = zip_mapping.dropna(subset=['zip_code', 'region_id'])[['zip_code', 'region_id']]

    joined = mapping.merge(units, on='region_id', how='inner')
    unmatched_regions = set(mapping['region_id']) - set(units['region_id'])
    if unmatched_regions:
        logger.info(
            f"{len(unmatched_regions)} mapped regions have no lean and were dropped from the join"
        )

    if joined.empty:
        return pd.DataFrame({
            'zip_code': pd.Series(dtype=object),
            'sample_count': pd.Series(dtype='int64'),
            'mean_lean': pd.Series(dtype=float),
        })

    zip_lean = (
        joined.groupby('zip_code', as_index=False, sort=True)
        .agg(sample_count=('lean', 'size'), mean_lean=('lean', 'mean'))
    )
    zip_lean['sample_count'] = zip_lean['sample_count'].astype('int64')
    zip_lean['mean_lean'] = zip_lean['mean_lean'].astype(float)

    logger.info(
        f"Resolved lean for {len(zip_lean)} of {mapping['zip_code'].nunique()} mapped zip codes"
    )
    return zip_lean[ZIP_LEAN_COLUMNS].reset_index(drop=True)


# =============================================================================
# Binning
# =============================================================================


def bin_lean(values: pd.Series, scheme: SegmentScheme) -> pd.Series:
    """
    Discretize lean values into the scheme's ordered labels.

    Bins are closed on the left, so a value equal to a cut point falls into
    the upper bin. Null input stays null.

    Args:
        values: Lean values (any numeric Series).
        scheme: Cut points and labels.

    Returns:
        Ordered categorical Series aligned with `values`.

    Example:
        >>> coarse = SegmentScheme(name='coarse', cut_points=[0.4, 0.6], labels=['low', 'mid', 'high'])
        >>> bin_lean(pd.Series([0.39, 0.40, 0.60]), coarse).tolist()
        ['low', 'mid', 'high']
    """
    bins = [-np.inf, *scheme.cut_points, np.inf]
    return pd.cut(
        pd.Series(values, dtype=float),
        bins=bins,
        right=False,
        labels=scheme.labels,
        ordered=True,
    )


def _as_labels(categorical: pd.Series) -> pd.Series:
    """Categorical -> object Series of label strings with None for missing."""
    labels = categorical.astype(object)
    return labels.where(categorical.notna(), None)


def assign_segments(
    zip_lean: pd.DataFrame,
    fine_scheme: SegmentScheme,
    coarse_scheme: SegmentScheme,
) -> pd.DataFrame:
    """
    Add lean_band (fine) and segment (coarse) columns to a ZipLean table.

    Returns:
        New DataFrame; the input is not modified.
    """
    out = zip_lean.copy()
    out['lean_band'] = _as_labels(bin_lean(out['mean_lean'], fine_scheme))
    out['segment'] = _as_labels(bin_lean(out['mean_lean'], coarse_scheme))
    return out


# =============================================================================
# Lookup
# =============================================================================


class SegmentResolver:
    """
    Read-only zip -> segment lookup built once from a segmented ZipLean table.

    Every accessor returns None for an unresolved zip.
    """

    def __init__(self, zip_lean: pd.DataFrame):
        self._rows: Dict[str, Dict[str, object]] = {
            row['zip_code']: row
            for row in zip_lean[['zip_code', *SEGMENT_COLUMNS]].to_dict('records')
        }

    def __len__(self) -> int:
        return len(self._rows)

    def __contains__(self, zip_code: object) -> bool:
        return zip_code in self._rows

    def segment(self, zip_code: Optional[str]) -> Optional[str]:
        """Coarse segment label, or None when the zip has no resolved lean."""
        row = self._rows.get(zip_code)
        return row['segment'] if row else None

    def lean_band(self, zip_code: Optional[str]) -> Optional[str]:
        """Fine display band, or None when the zip has no resolved lean."""
        row = self._rows.get(zip_code)
        return row['lean_band'] if row else None

    def mean_lean(self, zip_code: Optional[str]) -> Optional[float]:
        row = self._rows.get(zip_code)
        return float(row['mean_lean']) if row else None


# =============================================================================
# Entity Annotation
# =============================================================================


def annotate_entities(entities: pd.DataFrame, zip_lean: pd.DataFrame) -> pd.DataFrame:
    """
    Attach mean_lean, lean_band and segment to each entity via its zip code.

    Entities whose zip is unresolved keep null values in all three columns.

    Args:
        entities: Entity table with a zip_code column.
        zip_lean: Output of assign_segments().

    Returns:
        New entity DataFrame, same row order, three extra columns.
    """
    base = entities.drop(columns=[c for c in SEGMENT_COLUMNS if c in entities.columns])
    lookup = zip_lean[['zip_code', *SEGMENT_COLUMNS]]
    annotated = base.merge(lookup, on='zip_code', how='left', validate='many_to_one')

    for col in ('lean_band', 'segment'):
        annotated[col] = annotated[col].astype(object).where(annotated[col].notna(), None)

    unresolved = int(annotated['segment'].isna().sum())
    if unresolved:
        logger.warning(
            f"{unresolved} of {len(annotated)} entities have no resolvable zip lean; "
            "they count only toward unsegmented aggregates"
        )
    return annotated
