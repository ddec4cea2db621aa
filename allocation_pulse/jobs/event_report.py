"""
Event Report Generation Job for Allocation Pulse.

Loads the four input CSV tables, runs the analysis pipeline and writes every
output table as CSV plus a manifest.json into

    <output_dir>/<pivot date>/

Key Features:
- Same ingestion validation as the HTTP API (SchemaViolation aborts the run)
- Deterministic output: identical inputs produce byte-identical CSVs
- Idempotency via manifest.json, written last once every CSV is on disk
- Force flag for intentional regeneration

Idempotency Guarantees:
- A report directory holding manifest.json is complete and is never
  rewritten unless force=True
- A directory without a manifest (interrupted run) is regenerated

Usage:
    from allocation_pulse.jobs.event_report import generate_event_report

    result = generate_event_report()
    result = generate_event_report(force=True)

Command line:
    allocation-pulse-report --data-dir data --output-dir output --force
"""

from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional
import argparse
import json
import logging

from allocation_pulse import __version__
from allocation_pulse.core.config import Settings, get_settings
from allocation_pulse.models import AnalysisParams
from allocation_pulse.services.ingestion import SchemaViolation
from allocation_pulse.services.pipeline import load_inputs, run_analysis


# =============================================================================
# Constants
# =============================================================================

MANIFEST_FILE_NAME = 'manifest.json'

# Report file name format: {table}.csv
REPORT_FILE_TEMPLATE = "{name}.csv"

logger = logging.getLogger(__name__)


# =============================================================================
# Idempotency Functions
# =============================================================================

def report_dir_for(output_dir: str, pivot_at: datetime) -> Path:
    """Directory for the report of a given pivot: <output_dir>/<YYYY-MM-DD>."""
    return Path(output_dir) / pivot_at.date().isoformat()


def report_exists(report_dir: Path) -> bool:
    """A report is complete once its manifest has been written."""
    return (report_dir / MANIFEST_FILE_NAME).is_file()


def write_manifest(
    report_dir: Path,
    params: AnalysisParams,
    coverage: Dict[str, Any],
    files: List[str],
) -> Path:
    """Write manifest.json describing the run; returns its path."""
    manifest = {
        'version': __version__,
        'pivot_date': params.pivot_at.date().isoformat(),
        'params': params.model_dump(mode='json'),
        'coverage': coverage,
        'files': files,
    }
    path = report_dir / MANIFEST_FILE_NAME
    path.write_text(json.dumps(manifest, indent=2, sort_keys=True) + '\n')
    return path


# =============================================================================
# Main Job Function
# =============================================================================

def generate_event_report(
    settings: Optional[Settings] = None,
    params: Optional[AnalysisParams] = None,
    force: bool = False,
) -> Dict[str, Any]:
    """
    Run the pipeline over the configured CSV tables and write the report.

    Args:
        settings: Settings to use (default: cached get_settings()).
        params: Explicit run parameters (default: derived from settings).
        force: If True, regenerate even if a complete report exists.

    Returns:
        Dict with the following keys:
        - success: bool indicating if the report was produced or already present
        - skipped: bool if an existing report was kept
        - report_dir: Directory of the report
        - files: Written CSV file names (when generated)
        - coverage: CoverageReport as a dict (when generated)
        - error: Error message if an input file is missing

    Raises:
        SchemaViolation: If an input table fails validation.
    """
    settings = settings or get_settings()
    params = params or AnalysisParams.from_settings(settings)
    report_dir = report_dir_for(settings.output_dir, params.pivot_at)

    if not force and report_exists(report_dir):
        logger.info(f"Report for {params.pivot_at.date()} already exists at {report_dir}; skipping")
        return {
            'success': True,
            'skipped': True,
            'reason': 'Already generated',
            'report_dir': str(report_dir),
        }

    try:
        inputs = load_inputs(settings)
    except FileNotFoundError as e:
        logger.error(f"Cannot generate report: {e}")
        return {
            'success': False,
            'error': str(e),
            'report_dir': str(report_dir),
        }

    result = run_analysis(inputs, params)

    report_dir.mkdir(parents=True, exist_ok=True)
    manifest_path = report_dir / MANIFEST_FILE_NAME
    if manifest_path.exists():
        # Only a complete report carries a manifest.
        manifest_path.unlink()
        logger.info(f"Removed previous manifest at {manifest_path}")
    files = []
    for name, frame in result.frames().items():
        file_name = REPORT_FILE_TEMPLATE.format(name=name)
        frame.to_csv(report_dir / file_name, index=False)
        files.append(file_name)
        logger.info(f"Wrote {len(frame)} rows to {report_dir / file_name}")

    coverage = result.coverage.model_dump()
    write_manifest(report_dir, params, coverage, files)
    logger.info(f"Report for {params.pivot_at.date()} written to {report_dir}")

    return {
        'success': True,
        'skipped': False,
        'report_dir': str(report_dir),
        'files': files,
        'coverage': coverage,
    }


# =============================================================================
# Command Line Entry Point
# =============================================================================

def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Generate the allocation change event report.")
    p.add_argument("--data-dir", help="Directory with the four input CSV tables")
    p.add_argument("--output-dir", help="Root directory for report output")
    p.add_argument("--window-start", type=datetime.fromisoformat, help="Inclusive window start (ISO timestamp)")
    p.add_argument("--window-end", type=datetime.fromisoformat, help="Exclusive window end (ISO timestamp)")
    p.add_argument("--pivot-at", type=datetime.fromisoformat, help="Pivot timestamp (ISO)")
    p.add_argument("--bucket-minutes", type=int, help="Bucket width in minutes")
    p.add_argument(
        "--fill-empty-buckets",
        action="store_true",
        default=None,
        help="Emit zero-count buckets for slots without events",
    )
    p.add_argument("--force", action="store_true", help="Regenerate even if the report exists")
    return p.parse_args(argv)


def settings_from_args(args: argparse.Namespace) -> Settings:
    """Settings with command line values applied over environment defaults."""
    overrides = {
        'data_dir': args.data_dir,
        'output_dir': args.output_dir,
        'window_start': args.window_start,
        'window_end': args.window_end,
        'pivot_at': args.pivot_at,
        'bucket_minutes': args.bucket_minutes,
        'fill_empty_buckets': args.fill_empty_buckets,
    }
    base = get_settings()
    return base.model_copy(update={k: v for k, v in overrides.items() if v is not None})


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    settings = settings_from_args(args)

    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        result = generate_event_report(settings, force=args.force)
    except SchemaViolation as e:
        for error in e.errors:
            row = f" (row {error.row_number})" if error.row_number else ""
            logger.error(f"{e.table_type.value}.{error.field}: {error.message}{row}")
        logger.error(f"Report aborted: {e}")
        return 2

    if not result['success']:
        return 1
    return 0


# =============================================================================
# Module Exports
# =============================================================================

__all__ = [
    'generate_event_report',
    'report_dir_for',
    'report_exists',
    'write_manifest',
    'main',
]


if __name__ == "__main__":
    raise SystemExit(main())
