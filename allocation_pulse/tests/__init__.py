'''
Allocation Pulse Test Suite

Test Modules:
-------------
- test_ingestion.py: Input table validation and normalization
  - Required columns, numeric and [0, 1] range checks
  - Duplicate keys reported with 1-based row numbers
  - Code padding and local-time timestamp normalization

- test_geo_resolver.py: Zip lean resolution and segment schemes
- test_cohort.py: Active population counts and boundary exclusivity
- test_bucketizer.py: Window filter, bucket flooring and per-capita rates
- test_baseline.py: Weekday / time-of-day baselines around the pivot
- test_deltas.py: Per-event deltas and bucket distributions
- test_pipeline.py: End-to-end scenario, coverage and determinism
- test_api.py: HTTP route functions and error mapping
- test_jobs.py: Report job idempotency and command line exit codes

Running Tests:
--------------
    pip install -e ".[test]"
    pytest -v
    pytest -m "not slow"

Configuration:
--------------
See conftest.py for shared fixtures and test configuration.
'''

__all__ = []
