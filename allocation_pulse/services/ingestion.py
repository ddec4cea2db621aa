"""
Input Table Ingestion Service

This module loads and validates the four external input tables consumed by the
analysis pipeline. CSV files and API request bodies go through the same
validation and normalization so every downstream component sees one schema.

Table Types:
- geo_units:   region_id, lean                  (one row per county-equivalent)
- zip_mapping: zip_code, region_id              (many-to-many crosswalk)
- entities:    entity_id, zip_code, activated_at, deactivated_at
- events:      entity_id, from_state, to_state, occurred_at

Key Features:
- Required column validation per table (case-insensitive)
- Identifier presence, timestamp, numeric and [0, 1] domain validation
- entity_id uniqueness in the entity snapshot
- Code normalization (zero-padding of purely numeric zip / region codes)
- Timestamp normalization to tz-naive local time, shared by entities and
  events so bucket dates and activation dates use one convention

Validation functions return lists of ValidationError; require_valid() turns a
non-empty list into a fatal SchemaViolation. Nothing is silently coerced.
"""

from typing import Any, Dict, Iterable, List, Optional, Union
import logging

import numpy as np
import pandas as pd
from pydantic import BaseModel

from allocation_pulse.models import TableType, ValidationError

# Configure module logger
logger = logging.getLogger(__name__)

# =============================================================================
# CONSTANTS - Table Schemas
# =============================================================================

REQUIRED_COLUMNS: Dict[TableType, List[str]] = {
    TableType.GEO_UNITS: ['region_id', 'lean'],
    TableType.ZIP_MAPPING: ['zip_code', 'region_id'],
    TableType.ENTITIES: ['entity_id', 'zip_code', 'activated_at', 'deactivated_at'],
    TableType.EVENTS: ['entity_id', 'from_state', 'to_state', 'occurred_at'],
}

# Identifier columns kept as strings, mapped to whether nulls (or blanks) are allowed.
# An entity without a zip is unresolved, not invalid.
CODE_COLUMNS: Dict[TableType, Dict[str, bool]] = {
    TableType.GEO_UNITS: {'region_id': False},
    TableType.ZIP_MAPPING: {'zip_code': False, 'region_id': False},
    TableType.ENTITIES: {'entity_id': False, 'zip_code': True},
    TableType.EVENTS: {'entity_id': False},
}

# Timestamp columns mapped to whether nulls are allowed
TIMESTAMP_COLUMNS: Dict[TableType, Dict[str, bool]] = {
    TableType.ENTITIES: {'activated_at': False, 'deactivated_at': True},
    TableType.EVENTS: {'occurred_at': False},
}

# Numeric columns bounded to [0, 1], mapped to whether nulls are allowed.
# A null lean means "no attribute" and is dropped by the resolver's inner join.
UNIT_INTERVAL_COLUMNS: Dict[TableType, Dict[str, bool]] = {
    TableType.GEO_UNITS: {'lean': True},
    TableType.EVENTS: {'from_state': False, 'to_state': False},
}

# Columns that must be unique within a table
UNIQUE_COLUMNS: Dict[TableType, List[str]] = {
    TableType.GEO_UNITS: ['region_id'],
    TableType.ENTITIES: ['entity_id'],
}

DEFAULT_ZIP_CODE_WIDTH: int = 5
DEFAULT_REGION_CODE_WIDTH: int = 5

# Number of offending rows quoted in an error message
_EXAMPLE_ROWS: int = 5


# =============================================================================
# EXCEPTIONS
# =============================================================================


class SchemaViolation(ValueError):
    """
    Fatal input error: a required column is missing or a value lies outside
    its declared domain. The run must abort.
    """

    def __init__(self, table_type: TableType, errors: List[ValidationError]):
        self.table_type = table_type
        self.errors = errors
        details = '; '.join(e.message for e in errors)
        super().__init__(f"Schema violation in {table_type.value}: {details}")


# =============================================================================
# HELPERS
# =============================================================================


def _lower_columns(df: pd.DataFrame) -> pd.DataFrame:
    df_lower = df.copy()
    df_lower.columns = [str(col).strip().lower() for col in df_lower.columns]
    return df_lower


def _first_rows(mask: Union[pd.Series, np.ndarray]) -> List[int]:
    """1-based row numbers of the first offending rows."""
    positions = np.flatnonzero(np.asarray(mask, dtype=bool))[:_EXAMPLE_ROWS]
    return [int(p) + 1 for p in positions]


def parse_timestamps(values: pd.Series) -> pd.Series:
    """
    Parse a column into datetimes without dropping timezone information.

    Unparseable values become NaT. Text columns are parsed element by element
    so one file may mix '2016-11-08 10:00' and '2016-11-08T10:00:00Z' styles.
    Columns mixing offsets (or mixing naive and aware values) are parsed as UTC.
    """
    kwargs = {} if pd.api.types.is_datetime64_any_dtype(values.dtype) else {'format': 'mixed'}
    try:
        parsed = pd.to_datetime(values, errors='coerce', **kwargs)
    except (ValueError, TypeError):
        parsed = pd.to_datetime(values, errors='coerce', utc=True, **kwargs)
    if parsed.dtype == object:
        parsed = pd.to_datetime(values, errors='coerce', utc=True, **kwargs)
    return parsed


def normalize_timestamps(values: pd.Series, timezone: str) -> pd.Series:
    """
    Convert timestamps to tz-naive local time.

    tz-aware values are converted into `timezone` before the zone is dropped;
    naive values are taken to already be local. Entity activation dates and
    event bucket dates both derive from this function.

    Args:
        values: Raw timestamp column (strings, datetimes, or datetime64).
        timezone: IANA zone name, e.g. 'America/New_York'.

    Returns:
        datetime64[ns] Series without timezone.
    """
    parsed = parse_timestamps(values)
    if isinstance(parsed.dtype, pd.DatetimeTZDtype):
        parsed = parsed.dt.tz_convert(timezone).dt.tz_localize(None)
    return parsed


def normalize_codes(values: pd.Series, width: Optional[int] = None) -> pd.Series:
    """
    Normalize identifier codes to stripped strings.

    Purely numeric codes are zero-padded to `width` so that 1001 and '01001'
    match. A trailing '.0' left by float parsing is removed first. Nulls stay
    null.
    """
    present = values.notna().to_numpy()
    codes = values[present].astype(str).str.strip()
    codes = codes.str.replace(r'^(\d+)\.0$', r'\1', regex=True)
    if width:
        numeric = codes.str.fullmatch(r'\d+')
        codes = codes.where(~numeric, codes.str.zfill(width))

    out = np.full(len(values), None, dtype=object)
    out[present] = codes.to_numpy(dtype=object)
    out[out == ''] = None
    return pd.Series(out, index=values.index, dtype=object)


# =============================================================================
# VALIDATION FUNCTIONS
# =============================================================================


def validate_columns(
    df: pd.DataFrame,
    table_type: TableType
) -> List[ValidationError]:
    """
    Validate that all required columns are present in the DataFrame.

    Column matching is case-insensitive; extra columns are allowed.

    Args:
        df: The pandas DataFrame to validate
        table_type: Which input table the frame represents

    Returns:
        List of ValidationError objects for any missing columns
    """
    errors: List[ValidationError] = []
    df_columns = {str(col).strip().lower() for col in df.columns}
    for col in REQUIRED_COLUMNS[table_type]:
        if col not in df_columns:
            errors.append(ValidationError(
                field=col,
                message=f"Required column '{col}' is missing for table {table_type.value}",
                row_number=None
            ))
    return errors


def validate_data_types(
    df: pd.DataFrame,
    table_type: TableType
) -> List[ValidationError]:
    """
    Validate identifiers, timestamps, numeric columns and [0, 1] domains.

    Checks:
    - Identifier codes are present (entity_id, region_id, mapping zip_code)
    - Timestamp columns parse (and are non-null where required)
    - from_state / to_state are numeric, non-null and within [0, 1]
    - lean is numeric and within [0, 1] when present

    Args:
        df: The pandas DataFrame to validate (required columns present)
        table_type: Which input table the frame represents

    Returns:
        List of ValidationError objects for any type or domain issues
    """
    errors: List[ValidationError] = []
    df_lower = _lower_columns(df).reset_index(drop=True)

    for col, nullable in CODE_COLUMNS.get(table_type, {}).items():
        if nullable or col not in df_lower.columns:
            continue
        null_mask = normalize_codes(df_lower[col]).isna()
        if null_mask.any():
            rows = _first_rows(null_mask)
            errors.append(ValidationError(
                field=col,
                message=f"Found {int(null_mask.sum())} null or blank values in identifier column '{col}'. First null rows: {rows}",
                row_number=rows[0]
            ))

    for col, nullable in TIMESTAMP_COLUMNS.get(table_type, {}).items():
        if col not in df_lower.columns:
            continue
        raw = df_lower[col]
        parsed = parse_timestamps(raw)
        invalid_mask = parsed.isna() & raw.notna()
        if invalid_mask.any():
            rows = _first_rows(invalid_mask)
            errors.append(ValidationError(
                field=col,
                message=f"Found {int(invalid_mask.sum())} unparseable timestamps in '{col}'. First invalid rows: {rows}",
                row_number=rows[0]
            ))
        if not nullable:
            null_mask = raw.isna()
            if null_mask.any():
                rows = _first_rows(null_mask)
                errors.append(ValidationError(
                    field=col,
                    message=f"Found {int(null_mask.sum())} null values in required column '{col}'. First null rows: {rows}",
                    row_number=rows[0]
                ))

    for col, nullable in UNIT_INTERVAL_COLUMNS.get(table_type, {}).items():
        if col not in df_lower.columns:
            continue
        raw = df_lower[col]
        numeric = pd.to_numeric(raw, errors='coerce')

        non_numeric = numeric.isna() & raw.notna()
        if non_numeric.any():
            rows = _first_rows(non_numeric)
            errors.append(ValidationError(
                field=col,
                message=f"Found {int(non_numeric.sum())} non-numeric values in column '{col}'. First invalid rows: {rows}",
                row_number=rows[0]
            ))

        if not nullable:
            null_mask = raw.isna()
            if null_mask.any():
                rows = _first_rows(null_mask)
                errors.append(ValidationError(
                    field=col,
                    message=f"Found {int(null_mask.sum())} null values in required column '{col}'. First null rows: {rows}",
                    row_number=rows[0]
                ))

        out_of_range = (numeric < 0) | (numeric > 1)
        if out_of_range.any():
            rows = _first_rows(out_of_range)
            errors.append(ValidationError(
                field=col,
                message=f"Found {int(out_of_range.sum())} {col} values outside [0, 1] range. First invalid rows: {rows}",
                row_number=rows[0]
            ))

    return errors


def validate_uniqueness(
    df: pd.DataFrame,
    table_type: TableType
) -> List[ValidationError]:
    """
    Validate that identifier columns are unique where the table requires it.

    Args:
        df: The pandas DataFrame to validate
        table_type: Which input table the frame represents

    Returns:
        List of ValidationError objects for duplicated identifiers
    """
    errors: List[ValidationError] = []
    df_lower = _lower_columns(df).reset_index(drop=True)
    for col in UNIQUE_COLUMNS.get(table_type, []):
        if col not in df_lower.columns:
            continue
        codes = normalize_codes(df_lower[col])
        duplicated_mask = codes.notna() & codes.duplicated(keep=False)
        if duplicated_mask.any():
            rows = _first_rows(duplicated_mask)
            errors.append(ValidationError(
                field=col,
                message=f"Found {int(duplicated_mask.sum())} rows sharing a duplicate {col}. First duplicate rows: {rows}",
                row_number=rows[0]
            ))
    return errors


def validate_table(
    df: pd.DataFrame,
    table_type: TableType
) -> List[ValidationError]:
    """
    Run every validation for a table.

    Missing columns short-circuit the remaining checks, which would only
    repeat the same problem.
    """
    errors = validate_columns(df, table_type)
    if errors:
        return errors
    errors.extend(validate_data_types(df, table_type))
    errors.extend(validate_uniqueness(df, table_type))
    return errors


def require_valid(df: pd.DataFrame, table_type: TableType) -> None:
    """
    Raise SchemaViolation when the table fails validation.

    Raises:
        SchemaViolation: With every ValidationError found.
    """
    errors = validate_table(df, table_type)
    if errors:
        for error in errors:
            logger.error(f"{table_type.value}: {error.message}")
        raise SchemaViolation(table_type, errors)


# =============================================================================
# NORMALIZATION
# =============================================================================


def prepare_table(
    df: pd.DataFrame,
    table_type: TableType,
    timezone: str,
    zip_code_width: int = DEFAULT_ZIP_CODE_WIDTH,
    region_code_width: int = DEFAULT_REGION_CODE_WIDTH,
) -> pd.DataFrame:
    """
    Validate a raw table and return a normalized copy.

    The result holds only the required columns, lowercase, with codes as
    strings, timestamps as tz-naive local datetimes, and bounded numerics as
    floats.

    Args:
        df: Raw input frame.
        table_type: Which input table the frame represents.
        timezone: Local timezone for tz-aware timestamps.
        zip_code_width: Zero-pad width for numeric zip codes.
        region_code_width: Zero-pad width for numeric region codes.

    Returns:
        Normalized DataFrame.

    Raises:
        SchemaViolation: If the table fails validation.
    """
    require_valid(df, table_type)

    df_lower = _lower_columns(df).reset_index(drop=True)
    out = df_lower[REQUIRED_COLUMNS[table_type]].copy()

    widths = {'zip_code': zip_code_width, 'region_id': region_code_width}
    for col in CODE_COLUMNS[table_type]:
        out[col] = normalize_codes(out[col], widths.get(col))

    for col in TIMESTAMP_COLUMNS.get(table_type, {}):
        out[col] = normalize_timestamps(out[col], timezone)

    for col in UNIT_INTERVAL_COLUMNS.get(table_type, {}):
        out[col] = pd.to_numeric(out[col], errors='coerce').astype(float)

    logger.info(f"Prepared {table_type.value}: {len(out)} rows")
    return out


def load_table(
    source: Any,
    table_type: TableType,
    timezone: str,
    zip_code_width: int = DEFAULT_ZIP_CODE_WIDTH,
    region_code_width: int = DEFAULT_REGION_CODE_WIDTH,
) -> pd.DataFrame:
    """
    Read a CSV (path or file-like) and return the validated, normalized table.

    Every column is read as text so identifier codes keep their leading
    zeros; numeric and timestamp columns are converted during preparation.

    Raises:
        SchemaViolation: If the table fails validation.
    """
    df = pd.read_csv(source, dtype=str)
    logger.info(f"Parsed {table_type.value} CSV with {len(df)} rows and {len(df.columns)} columns")
    return prepare_table(
        df,
        table_type,
        timezone=timezone,
        zip_code_width=zip_code_width,
        region_code_width=region_code_width,
    )


def frame_from_records(
    records: Iterable[BaseModel],
    table_type: TableType
) -> pd.DataFrame:
    """
    Build a raw table from API request records.

    An empty record list yields an empty frame that still carries the
    required columns.
    """
    rows = [record.model_dump() for record in records]
    if not rows:
        return pd.DataFrame(columns=REQUIRED_COLUMNS[table_type])
    return pd.DataFrame(rows)
