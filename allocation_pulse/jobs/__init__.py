"""
Batch Jobs for Allocation Pulse.

This module provides the report job that runs the analysis pipeline over the
configured CSV tables:
- Event report generation (event_report.py)

Idempotency Guarantees:
-----------------------
- Event report: a report directory (one per pivot date) holding
  manifest.json is complete and is never regenerated. The manifest is written
  after every CSV, so an interrupted run leaves no manifest and is redone on
  the next invocation.

- Force flag (force=True / --force) allows intentional regeneration, e.g.
  after correcting an input table.

Usage:
    from allocation_pulse.jobs import generate_event_report

    result = generate_event_report()
    if result['skipped']:
        print(f"Report already present in {result['report_dir']}")
"""

from allocation_pulse.jobs.event_report import (
    generate_event_report,
    report_dir_for,
    report_exists,
    main,
)


__all__ = [
    'generate_event_report',
    'report_dir_for',
    'report_exists',
    'main',
]
