"""
Test Module for the end-to-end Analysis Pipeline.

Runs the synthetic scenario from conftest.py through every stage and checks
the hand-computed expectations documented on the scenario fixtures:
- 5 events over 100 active entities give a rate of 0.05
- Baseline for Thursday 10:00 is the single pre-pivot observation
- Coverage counts for resolution gaps, orphans and missing baselines
- Byte-identical output on repeated runs
- Denominator-date alignment for tz-aware inputs
"""

from datetime import datetime
from typing import Dict

import pandas as pd
import pytest

from allocation_pulse.models import AnalysisParams, AnalysisResponse, Period, RateRecord
from allocation_pulse.services.ingestion import SchemaViolation
from allocation_pulse.services.pipeline import (
    AnalysisResult,
    load_inputs,
    prepare_inputs,
    records_from_frame,
    run_analysis,
)

from allocation_pulse.tests.conftest import make_event


BUCKET_B = pd.Timestamp('2016-10-13 10:00')


def _run(tables: Dict[str, pd.DataFrame], params: AnalysisParams) -> AnalysisResult:
    inputs = prepare_inputs(
        tables['geo_units'],
        tables['zip_mapping'],
        tables['entities'],
        tables['events'],
        timezone=params.timezone,
    )
    return run_analysis(inputs, params)


@pytest.fixture
def result(scenario_tables, scenario_params) -> AnalysisResult:
    return _run(scenario_tables, scenario_params)


# ============================================================
# Rates
# ============================================================

@pytest.mark.scenario
class TestOverallRates:

    def test_buckets_present(self, result: AnalysisResult):
        assert result.overall_rates['bucket_start'].tolist() == [
            pd.Timestamp('2016-10-06 10:00'),
            pd.Timestamp('2016-10-07 15:00'),
            pd.Timestamp('2016-10-12 09:00'),
            BUCKET_B,
            pd.Timestamp('2016-10-13 11:00'),
        ], "Out-of-window events are dropped; 10:59 and 11:00 land in different buckets"

    @pytest.mark.property
    def test_five_over_hundred(self, result: AnalysisResult):
        row = result.overall_rates.set_index('bucket_start').loc[BUCKET_B]

        assert row['event_count'] == 5
        assert row['active_population'] == 100
        assert row['rate'] == pytest.approx(0.05)

    def test_baseline_and_relative_rate(self, result: AnalysisResult):
        row = result.overall_rates.set_index('bucket_start').loc[BUCKET_B]

        assert row['weekday'] == 4
        assert row['time_of_day'] == '10:00'
        assert row['period'] == Period.POST.value
        assert row['baseline_rate'] == pytest.approx(0.02)
        assert row['baseline_samples'] == 1
        assert row['excess_rate'] == pytest.approx(0.03)
        assert row['relative_rate'] == pytest.approx(2.5)

    def test_pivot_date_bucket_is_post(self, result: AnalysisResult):
        row = result.overall_rates.set_index('bucket_start').loc[pd.Timestamp('2016-10-12 09:00')]
        assert row['period'] == Period.POST.value
        assert pd.isna(row['baseline_rate'])

    def test_orphan_event_counts_in_overall(self, result: AnalysisResult):
        row = result.overall_rates.set_index('bucket_start').loc[pd.Timestamp('2016-10-07 15:00')]
        assert row['event_count'] == 1


@pytest.mark.scenario
class TestSegmentRates:

    def test_records(self, result: AnalysisResult):
        rates = result.segment_rates
        keys = list(zip(rates['bucket_start'], rates['segment']))

        assert keys == [
            (pd.Timestamp('2016-10-06 10:00'), 'low'),
            (pd.Timestamp('2016-10-06 10:00'), 'high'),
            (pd.Timestamp('2016-10-12 09:00'), 'low'),
            (BUCKET_B, 'low'),
            (BUCKET_B, 'mid'),
            (BUCKET_B, 'high'),
            (pd.Timestamp('2016-10-13 11:00'), 'low'),
        ]

    def test_segment_denominators(self, result: AnalysisResult):
        b = result.segment_rates[result.segment_rates['bucket_start'] == BUCKET_B].set_index('segment')

        assert b.loc['low', 'active_population'] == 40
        assert b.loc['high', 'active_population'] == 30
        assert b.loc['mid', 'active_population'] == 10
        assert b.loc['low', 'rate'] == pytest.approx(2 / 40)
        assert b.loc['mid', 'rate'] == pytest.approx(1 / 10)

    def test_segment_baselines(self, result: AnalysisResult):
        b = result.segment_rates[result.segment_rates['bucket_start'] == BUCKET_B].set_index('segment')

        assert b.loc['low', 'baseline_rate'] == pytest.approx(1 / 40)
        assert b.loc['low', 'relative_rate'] == pytest.approx(2.0)
        assert b.loc['high', 'baseline_rate'] == pytest.approx(1 / 30)
        assert pd.isna(b.loc['mid', 'baseline_rate']), "mid has no Thursday 10:00 history"

    def test_unresolved_entities_never_segmented(self, result: AnalysisResult):
        assert result.segment_rates['segment'].notna().all()
        b = result.segment_rates[result.segment_rates['bucket_start'] == BUCKET_B]
        assert b['event_count'].sum() == 4, "e080 (unresolved zip) counts only toward the overall rate"


# ============================================================
# Resolution, Deltas and Coverage
# ============================================================

@pytest.mark.scenario
class TestResolutionAndDeltas:

    def test_zip_lean(self, result: AnalysisResult):
        assert result.zip_lean['zip_code'].tolist() == ['10001', '10002', '10005']
        assert result.zip_lean['segment'].tolist() == ['low', 'high', 'mid']

    def test_entities_annotated(self, result: AnalysisResult):
        assert len(result.entities) == 100
        assert result.entities['segment'].isna().sum() == 20

    def test_deltas_within_pivot_window(self, result: AnalysisResult):
        assert len(result.deltas) == 7
        assert result.deltas['occurred_at'].min() == pd.Timestamp('2016-10-12 09:00')
        assert result.deltas['occurred_at'].is_monotonic_increasing

    def test_delta_distribution(self, result: AnalysisResult):
        dist = result.delta_distribution
        b = dist[(dist['bucket_start'] == BUCKET_B) & dist['segment'].isna()].iloc[0]

        assert b['event_count'] == 5
        assert (b['increases'], b['decreases'], b['unchanged']) == (1, 3, 1)
        assert len(dist) == 8


@pytest.mark.scenario
class TestCoverage:

    def test_counts(self, result: AnalysisResult):
        coverage = result.coverage

        assert coverage.zips_mapped == 5
        assert coverage.zips_resolved == 3
        assert coverage.entities_total == 100
        assert coverage.entities_unresolved == 20
        assert coverage.events_loaded == 11
        assert coverage.events_in_window == 10
        assert coverage.events_without_entity == 1
        assert coverage.rate_records == 5 + 7
        assert coverage.rate_records_null_rate == 0

    def test_missing_baselines_counted(self, result: AnalysisResult):
        # overall: 10-12 09:00, 10-13 11:00; segments: 10-12 09:00 low, B mid, 10-13 11:00 low
        assert result.coverage.rate_records_missing_baseline == 5


# ============================================================
# Determinism and Serialization
# ============================================================

@pytest.mark.property
class TestDeterminism:

    def test_repeated_runs_identical(self, scenario_tables, scenario_params):
        first = _run(scenario_tables, scenario_params)
        second = _run(scenario_tables, scenario_params)

        for name, frame in first.frames().items():
            other = second.frames()[name]
            assert frame.to_csv(index=False) == other.to_csv(index=False), (
                f"{name} differs between identical runs"
            )

    def test_response_json_identical(self, scenario_tables, scenario_params):
        first = _run(scenario_tables, scenario_params).to_response()
        second = _run(scenario_tables, scenario_params).to_response()
        assert first.model_dump_json() == second.model_dump_json()


class TestToResponse:

    def test_nulls_become_none(self, result: AnalysisResult):
        response = result.to_response()

        assert isinstance(response, AnalysisResponse)
        assert len(response.overall_rates) == 5
        post_eleven = response.overall_rates[-1]
        assert post_eleven.baseline_rate is None
        assert post_eleven.relative_rate is None
        assert post_eleven.segment is None
        assert response.coverage == result.coverage

    def test_records_from_empty_frame(self):
        assert records_from_frame(pd.DataFrame(), RateRecord) == []


# ============================================================
# Timezone Alignment
# ============================================================

@pytest.mark.property
class TestDenominatorDateAlignment:
    """
    Bucket dates and activation dates must share one local convention.

    e1 activates 2016-10-10 local. e2 activates 2016-10-12 14:00Z, which is
    10:00 on 2016-10-12 in New York. e1's event at 2016-10-13 03:30Z is 23:30
    on 2016-10-12 local, so its bucket date is 10-12 and e2 (activated that
    day) must not be counted: population 1. Using UTC dates would put the
    bucket on 10-13 and count both.
    """

    def test_tz_aware_inputs(self, scenario_params: AnalysisParams):
        tables = {
            'geo_units': pd.DataFrame({'region_id': ['01001'], 'lean': [0.2]}),
            'zip_mapping': pd.DataFrame({'zip_code': ['10001'], 'region_id': ['01001']}),
            'entities': pd.DataFrame({
                'entity_id': ['e1', 'e2'],
                'zip_code': ['10001', '10001'],
                'activated_at': ['2016-10-10T12:00:00-04:00', '2016-10-12T14:00:00Z'],
                'deactivated_at': [None, None],
            }),
            'events': pd.DataFrame([make_event('e1', '2016-10-13T03:30:00Z')]),
        }
        result = _run(tables, scenario_params)
        row = result.overall_rates.iloc[0]

        assert row['bucket_start'] == pd.Timestamp('2016-10-12 23:00')
        assert row['active_population'] == 1
        assert row['rate'] == pytest.approx(1.0)


# ============================================================
# Options and Failures
# ============================================================

class TestFillEmptyBuckets:

    @pytest.mark.slow
    def test_fill_emits_every_bucket(self, scenario_tables, scenario_params):
        params = scenario_params.model_copy(update={'fill_empty_buckets': True})
        result = _run(scenario_tables, params)
        hours = 19 * 24

        assert len(result.overall_rates) == hours
        assert len(result.segment_rates) == hours * 3
        assert result.overall_rates['event_count'].sum() == 10
        quiet = result.overall_rates.set_index('bucket_start').loc[pd.Timestamp('2016-10-06 03:00')]
        assert quiet['rate'] == 0.0


class TestFailures:

    def test_schema_violation_aborts(self, scenario_tables, scenario_params):
        tables = dict(scenario_tables)
        events = tables['events'].copy()
        events.loc[0, 'to_state'] = 1.2
        tables['events'] = events

        with pytest.raises(SchemaViolation):
            _run(tables, scenario_params)

    def test_invalid_window_rejected(self, scenario_params: AnalysisParams):
        with pytest.raises(ValueError):
            AnalysisParams(**{
                **scenario_params.model_dump(),
                'window_start': datetime(2016, 10, 20),
                'window_end': datetime(2016, 10, 1),
            })

    def test_bucket_width_must_divide_day(self, scenario_params: AnalysisParams):
        with pytest.raises(ValueError):
            AnalysisParams(**{**scenario_params.model_dump(), 'bucket_minutes': 7})


class TestLoadInputs:

    def test_loads_csv_directory(self, scenario_dir, test_settings, scenario_params):
        inputs = load_inputs(test_settings, data_dir=str(scenario_dir))
        result = run_analysis(inputs, scenario_params)

        assert len(inputs.entities) == 100
        row = result.overall_rates.set_index('bucket_start').loc[BUCKET_B]
        assert row['rate'] == pytest.approx(0.05)

    def test_missing_file(self, tmp_path, test_settings):
        with pytest.raises(FileNotFoundError):
            load_inputs(test_settings, data_dir=str(tmp_path / 'nowhere'))
