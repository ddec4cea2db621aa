"""
Pytest Configuration and Shared Fixtures for Allocation Pulse Tests.

This module provides fixtures and configuration for all tests, supporting:
- Async test execution with pytest-asyncio (API route functions are awaited
  directly)
- Segment scheme and AnalysisParams fixtures
- A synthetic scenario of the four raw input tables with hand-computed
  expectations (documented on scenario_tables)
- Helpers for writing tables as CSV for ingestion and job tests

Dependencies:
- pytest
- pytest-asyncio
- pandas
"""

from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

import pandas as pd
import pytest

from allocation_pulse.core.config import Settings
from allocation_pulse.models import AnalysisParams, SegmentScheme


# ============================================================
# PYTEST PLUGINS CONFIGURATION
# ============================================================

# This must be a module-level constant named pytest_plugins
pytest_plugins: List[str] = ['pytest_asyncio']


# ============================================================
# PYTEST HOOKS
# ============================================================

def pytest_configure(config) -> None:
    """
    Configure custom pytest markers for test organization.

    Custom markers defined:
    - slow: Marks tests as slow (deselect with -m "not slow")
    - property: Marks tests asserting a documented pipeline property
    - scenario: Marks end-to-end tests over the synthetic scenario

    Usage:
        pytest -m "not slow"
        pytest -m property
    """
    config.addinivalue_line(
        'markers',
        'slow: marks tests as slow (deselect with -m "not slow")'
    )
    config.addinivalue_line(
        'markers',
        'property: marks tests asserting a documented pipeline property'
    )
    config.addinivalue_line(
        'markers',
        'scenario: marks end-to-end tests over the synthetic scenario'
    )


# ============================================================
# SCHEME & PARAMETER FIXTURES
# ============================================================

@pytest.fixture
def fine_scheme() -> SegmentScheme:
    """5-level display scheme with cut points 0.2 / 0.4 / 0.6 / 0.8."""
    return SegmentScheme(
        name='fine',
        cut_points=[0.2, 0.4, 0.6, 0.8],
        labels=[
            'strong_opposition',
            'lean_opposition',
            'neutral',
            'lean_support',
            'strong_support',
        ],
    )


@pytest.fixture
def coarse_scheme() -> SegmentScheme:
    """3-level rate comparison scheme with cut points 0.4 / 0.6."""
    return SegmentScheme(name='coarse', cut_points=[0.4, 0.6], labels=['low', 'mid', 'high'])


@pytest.fixture
def scenario_params(fine_scheme: SegmentScheme, coarse_scheme: SegmentScheme) -> AnalysisParams:
    """
    Parameters matching scenario_tables.

    Window [2016-10-01, 2016-10-20), pivot Wednesday 2016-10-12 19:00,
    60-minute buckets, 72-hour delta half-window.
    """
    return AnalysisParams(
        window_start=datetime(2016, 10, 1),
        window_end=datetime(2016, 10, 20),
        pivot_at=datetime(2016, 10, 12, 19, 0),
        bucket_minutes=60,
        delta_window_hours=72,
        timezone='America/New_York',
        fine_scheme=fine_scheme,
        coarse_scheme=coarse_scheme,
    )


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Settings pointing at tmp_path data/output directories, scenario window."""
    return Settings(
        data_dir=str(tmp_path / 'data'),
        output_dir=str(tmp_path / 'output'),
        window_start=datetime(2016, 10, 1),
        window_end=datetime(2016, 10, 20),
        pivot_at=datetime(2016, 10, 12, 19, 0),
        bucket_minutes=60,
        delta_window_hours=72,
        timezone='America/New_York',
        fill_empty_buckets=False,
    )


# ============================================================
# TABLE BUILDERS
# ============================================================

def make_entities(
    ids: List[str],
    zip_code: Optional[str],
    activated_at: str = '2016-09-01 00:00:00',
    deactivated_at: Optional[str] = None,
) -> pd.DataFrame:
    """Raw entity rows sharing one zip and activation interval."""
    return pd.DataFrame({
        'entity_id': ids,
        'zip_code': [zip_code] * len(ids),
        'activated_at': [activated_at] * len(ids),
        'deactivated_at': [deactivated_at] * len(ids),
    })


def make_event(entity_id: str, occurred_at: str, from_state: float = 0.5, to_state: float = 0.4) -> Dict:
    return {
        'entity_id': entity_id,
        'from_state': from_state,
        'to_state': to_state,
        'occurred_at': occurred_at,
    }


def write_tables(directory: Path, tables: Dict[str, pd.DataFrame]) -> Path:
    """
    Write raw tables as CSV using the default Settings file names.

    Args:
        directory: Target directory (created when missing)
        tables: Mapping of geo_units / zip_mapping / entities / events to frames

    Returns:
        The directory written to
    """
    directory.mkdir(parents=True, exist_ok=True)
    for name, frame in tables.items():
        frame.to_csv(directory / f"{name}.csv", index=False)
    return directory


# ============================================================
# SCENARIO FIXTURES
# ============================================================

@pytest.fixture
def scenario_geo_units() -> pd.DataFrame:
    """Five regions; 01007 has no lean."""
    return pd.DataFrame({
        'region_id': ['01001', '01003', '01005', '01007', '01011'],
        'lean': [0.2, 0.5, 0.8, None, 0.5],
    })


@pytest.fixture
def scenario_zip_mapping() -> pd.DataFrame:
    """
    Crosswalk with every resolution case.

    10001 -> 01001               mean 0.20 (low)
    10002 -> 01003, 01005        mean 0.65 (high)
    10003 -> 01007               region without lean, unresolved
    10004 -> 01009               unknown region, unresolved
    10005 -> 01011               mean 0.50 (mid)
    """
    return pd.DataFrame({
        'zip_code': ['10001', '10002', '10002', '10003', '10004', '10005'],
        'region_id': ['01001', '01003', '01005', '01007', '01009', '01011'],
    })


@pytest.fixture
def scenario_entities() -> pd.DataFrame:
    """
    100 entities, all active since 2016-09-01 and never deactivated.

    e000-e039 low (10001), e040-e069 high (10002), e070-e079 mid (10005),
    e080-e089 unresolved (10003), e090-e099 unresolved (99999, not mapped).
    """
    ids = [f"e{i:03d}" for i in range(100)]
    return pd.concat([
        make_entities(ids[0:40], '10001'),
        make_entities(ids[40:70], '10002'),
        make_entities(ids[70:80], '10005'),
        make_entities(ids[80:90], '10003'),
        make_entities(ids[90:100], '99999'),
    ], ignore_index=True)


@pytest.fixture
def scenario_events() -> pd.DataFrame:
    """
    Eleven events; ten fall inside the window.

    Thu 2016-10-06 10:00 bucket: e000, e040            (pre, overall rate 0.02)
    Fri 2016-10-07 15:00 bucket: ghost (no entity)     (pre, overall only)
    Wed 2016-10-12 09:00 bucket: e004                  (pivot date, post)
    Thu 2016-10-13 10:00 bucket: e000, e001, e041, e070, e080 (5 events, rate 0.05)
    Thu 2016-10-13 11:00 bucket: e002
    Tue 2016-09-20 12:00:        e003                  (outside the window)
    """
    return pd.DataFrame([
        make_event('e000', '2016-10-06 10:10:00', 0.5, 0.4),
        make_event('e040', '2016-10-06 10:20:00', 0.5, 0.6),
        make_event('ghost', '2016-10-07 15:00:00', 0.5, 0.4),
        make_event('e004', '2016-10-12 09:00:00', 0.4, 0.5),
        make_event('e000', '2016-10-13 10:00:00', 0.6, 0.2),
        make_event('e001', '2016-10-13 10:15:00', 0.5, 0.5),
        make_event('e041', '2016-10-13 10:30:00', 0.3, 0.7),
        make_event('e070', '2016-10-13 10:45:00', 0.5, 0.3),
        make_event('e080', '2016-10-13 10:59:00', 0.5, 0.1),
        make_event('e002', '2016-10-13 11:00:00', 0.5, 0.6),
        make_event('e003', '2016-09-20 12:00:00', 0.5, 0.4),
    ])


@pytest.fixture
def scenario_tables(
    scenario_geo_units: pd.DataFrame,
    scenario_zip_mapping: pd.DataFrame,
    scenario_entities: pd.DataFrame,
    scenario_events: pd.DataFrame,
) -> Dict[str, pd.DataFrame]:
    """All four raw scenario tables keyed by their default file stem."""
    return {
        'geo_units': scenario_geo_units,
        'zip_mapping': scenario_zip_mapping,
        'entities': scenario_entities,
        'events': scenario_events,
    }


@pytest.fixture
def scenario_dir(tmp_path: Path, scenario_tables: Dict[str, pd.DataFrame]) -> Path:
    """Scenario tables written as CSV under tmp_path/data."""
    return write_tables(tmp_path / 'data', scenario_tables)
