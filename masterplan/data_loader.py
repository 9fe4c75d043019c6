# Load production order sheets and normalize rows for the planning engine.
# Version: 1.0.0
# Resolves header aliases, locale-ambiguous numbers and stringly-typed flags into ProductionItems.

import math
import numbers
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date, datetime
from io import BytesIO
from pathlib import Path
from typing import Any, BinaryIO

import pandas as pd

from .constants import (
    PRODUCTION_PROCESSES,
    PlanningConstants,
    ProcessKind,
    TaskStatus,
    build_constants,
)
from .errors import FileLoadError, ValidationError
from .logger import logger


# Values accepted as "process required"
TRUE_FLAG_VALUES: frozenset[str] = frozenset({"TRUE", "1", "SÍ", "SI"})

# UPDATE column values mapped to task lifecycle status
UPDATE_STATUS_MAP: dict[str, TaskStatus] = {
    "COMPLETED": "completed",
    "IN PROCESS": "in_progress",
    "CANCELLED": "cancelled",
    "CANCELED": "cancelled",
    "PENDING": "pending",
}

# Sheet preferred when a workbook has several
PRODUCTION_SHEET_MARKERS: tuple[str, ...] = ("PROCESOS PRD", "PROCESOS_PRD")

_CURRENCY_AND_SPACES = re.compile(r"[\s$€£]")


@dataclass(frozen=True)
class ProductionItem:
    """One manufacturing order line.

    Identified by (order_id, position). Immutable once created; corrections
    require re-ingesting the sheet.

    Attributes:
        order_id: Purchase order number (PEDIDO / PO).
        position: Line position within the order.
        project: Project name (PROYECTO).
        component: Component name (COMPONENTE).
        material: Material code, drives the fallback process rules.
        quantity: Ordered quantity in units.
        sheets: Sheet count (PLIEGOS).
        due_date: Production due date, or None if blank/unparseable.
        unit_price: Price per unit.
        row_number: Original row number in the sheet (for messages).
    """
    order_id: str
    position: int
    project: str
    component: str
    material: str
    quantity: int
    sheets: int
    due_date: date | None
    unit_price: float
    row_number: int = 0

    @property
    def item_id(self) -> str:
        """Stable identifier built from order id and position."""
        return f"{self.order_id}-{self.position}"


@dataclass
class NormalizedRow:
    """A production item together with its raw process flags.

    Attributes:
        item: The normalized ProductionItem.
        flags: Process kind to required flag, for every production process.
        update_status: Initial task status derived from the UPDATE column.
    """
    item: ProductionItem
    flags: dict[ProcessKind, bool] = field(default_factory=dict)
    update_status: TaskStatus = "pending"

    @property
    def has_any_flag(self) -> bool:
        """True if at least one process flag is set."""
        return any(self.flags.values())


@dataclass
class SkippedRow:
    """A row that did not produce an item.

    Attributes:
        row_number: Row number in the sheet (header is row 1).
        reason: Why the row was skipped.
    """
    row_number: int
    reason: str


@dataclass
class IngestionResult:
    """Result of normalizing a whole sheet.

    Attributes:
        rows: Normalized rows in sheet order.
        skipped: Rows that were dropped or could not be parsed.
        total_rows: Number of input rows.
        duplicate_ids: Item ids (order-position) seen on more than one row.
    """
    rows: list[NormalizedRow] = field(default_factory=list)
    skipped: list[SkippedRow] = field(default_factory=list)
    total_rows: int = 0
    duplicate_ids: list[str] = field(default_factory=list)

    @property
    def items(self) -> list[ProductionItem]:
        return [r.item for r in self.rows]

    @property
    def skipped_count(self) -> int:
        return len(self.skipped)


def is_blank(value: Any) -> bool:
    """Check whether a cell value counts as empty.

    None, NaN/NaT and whitespace-only strings are blank.
    """
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, (list, tuple, dict, set)):
        return len(value) == 0
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


def resolve_column(row: Mapping[str, Any], aliases: tuple[str, ...]) -> Any:
    """Return the value of the first alias present with a non-blank value.

    Args:
        row: Raw row mapping (header -> value).
        aliases: Header names to try, in order. Matching is case-sensitive.

    Returns:
        The raw cell value, or None if no alias resolves.
    """
    for name in aliases:
        if name in row and not is_blank(row[name]):
            return row[name]
    return None


def parse_number(value: Any) -> float:
    """Parse a number written in either decimal convention.

    Currency symbols and whitespace are stripped first. If both ',' and '.'
    appear, whichever occurs later is the decimal separator. A lone ','
    is a decimal separator. Unparseable or non-finite values become 0.

    Args:
        value: Raw cell value (str, int, float or anything else).

    Returns:
        Parsed float, 0.0 on failure.
    """
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, numbers.Real):
        try:
            number = float(value)
        except OverflowError:
            return 0.0
        return number if math.isfinite(number) else 0.0
    if not isinstance(value, str):
        return 0.0

    cleaned = _CURRENCY_AND_SPACES.sub("", value)
    if "_" in cleaned:
        return 0.0
    last_comma = cleaned.rfind(",")
    last_dot = cleaned.rfind(".")

    if last_comma > last_dot:
        # European: 1.234,56 or 1234,56
        cleaned = cleaned.replace(".", "").replace(",", ".", 1)
    elif last_dot > last_comma:
        # American: 1,234.56 or 1234.56
        cleaned = cleaned.replace(",", "")

    try:
        number = float(cleaned)
    except ValueError:
        return 0.0
    # NaN, inf and overflowing exponents
    if not math.isfinite(number):
        return 0.0
    return number


def parse_flag(value: Any) -> bool:
    """Parse a process flag.

    Accepts TRUE, 1, SÍ, SI (any case) or a native boolean true.
    Anything else is False.
    """
    if isinstance(value, bool):
        return value
    if is_blank(value):
        return False
    if isinstance(value, numbers.Real):
        return value == 1
    return str(value).strip().upper() in TRUE_FLAG_VALUES


def parse_due_date(value: Any) -> date | None:
    """Parse a due date cell, returning None for blank or unparseable values."""
    if is_blank(value):
        return None
    if isinstance(value, pd.Timestamp):
        return value.date()
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        parsed = pd.to_datetime(str(value).strip(), errors="coerce")
    except (ValueError, TypeError, OverflowError):
        return None
    if pd.isna(parsed):
        return None
    return parsed.date()


def _to_text(value: Any) -> str:
    """Render an identifier cell as text (Excel hands back 1402048642.0)."""
    if is_blank(value):
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def _parse_update_status(value: Any) -> TaskStatus:
    key = _to_text(value).upper()
    return UPDATE_STATUS_MAP.get(key, "pending")


def normalize_row(
    row: Mapping[str, Any],
    row_number: int = 0,
    constants: PlanningConstants | None = None
) -> NormalizedRow | None:
    """Normalize one raw row into a ProductionItem with process flags.

    Args:
        row: Raw row mapping (header -> value).
        row_number: Row number used for messages and as position fallback.
        constants: Planning constants providing the header aliases.

    Returns:
        NormalizedRow, or None if the row carries no identifying data
        (no order id, project or position).

    Raises:
        ValidationError: If the row is not a mapping.
    """
    if not isinstance(row, Mapping):
        raise ValidationError(
            field="row",
            value=type(row).__name__,
            reason="Row must be a mapping of header to value",
            row=row_number
        )

    constants = constants or build_constants()
    aliases = constants.column_aliases

    order_id = _to_text(resolve_column(row, aliases["order_id"]))
    project = _to_text(resolve_column(row, aliases["project"]))
    raw_position = resolve_column(row, aliases["position"])

    # A row is usable if it has order id OR project OR position
    if not order_id and not project and raw_position is None:
        return None

    position = int(parse_number(raw_position)) if raw_position is not None else row_number

    item = ProductionItem(
        order_id=order_id,
        position=position,
        project=project,
        component=_to_text(resolve_column(row, aliases["component"])),
        material=_to_text(resolve_column(row, aliases["material"])),
        quantity=int(parse_number(resolve_column(row, aliases["quantity"]))),
        sheets=int(parse_number(resolve_column(row, aliases["sheets"]))),
        due_date=parse_due_date(resolve_column(row, aliases["due_date"])),
        unit_price=parse_number(resolve_column(row, aliases["unit_price"])),
        row_number=row_number,
    )

    flags: dict[ProcessKind, bool] = {}
    for kind in PRODUCTION_PROCESSES:
        flag_value = None
        for name in constants.flag_aliases.get(kind, ()):
            if name in row and not is_blank(row[name]):
                flag_value = row[name]
                break
        flags[kind] = parse_flag(flag_value)

    return NormalizedRow(
        item=item,
        flags=flags,
        update_status=_parse_update_status(resolve_column(row, aliases["update_status"])),
    )


def normalize_rows(
    rows: list[Mapping[str, Any]],
    constants: PlanningConstants | None = None
) -> IngestionResult:
    """Normalize every row of a sheet, skipping unusable rows.

    Never raises for bad rows: each one is logged, counted and skipped
    without affecting its neighbours.

    Args:
        rows: Raw rows in sheet order (header row excluded).
        constants: Planning constants providing the header aliases.

    Returns:
        IngestionResult with normalized rows and skip accounting.
    """
    constants = constants or build_constants()
    result = IngestionResult(total_rows=len(rows))
    seen_ids: dict[str, int] = {}

    for idx, row in enumerate(rows):
        row_number = idx + 2  # Sheet rows are 1-indexed, plus header
        try:
            normalized = normalize_row(row, row_number, constants)
        except (ValidationError, ValueError, TypeError, OverflowError) as e:
            logger.warning(f"Row {row_number} skipped: {e}")
            result.skipped.append(SkippedRow(row_number=row_number, reason=str(e)))
            continue

        if normalized is None:
            logger.debug(f"Row {row_number} skipped: no order id, project or position")
            result.skipped.append(
                SkippedRow(row_number=row_number, reason="No identifying data")
            )
            continue

        item_id = normalized.item.item_id
        if item_id in seen_ids:
            logger.warning(
                f"Row {row_number} repeats item {item_id} from row {seen_ids[item_id]}"
            )
            if item_id not in result.duplicate_ids:
                result.duplicate_ids.append(item_id)
        else:
            seen_ids[item_id] = row_number

        result.rows.append(normalized)

    logger.info(
        f"Normalized {len(result.rows)} of {result.total_rows} rows "
        f"({result.skipped_count} skipped)"
    )
    return result


def _pick_sheet(sheet_names: list[str], sheet_name: str | None) -> str:
    if sheet_name is not None:
        return sheet_name
    for name in sheet_names:
        upper = name.upper()
        if any(marker in upper for marker in PRODUCTION_SHEET_MARKERS):
            return name
    return sheet_names[0]


def load_production_sheet(
    source: str | Path | BinaryIO | bytes,
    filename: str | None = None,
    sheet_name: str | None = None
) -> list[dict[str, Any]]:
    """Load a production order sheet into plain row dictionaries.

    Reads .xlsx workbooks (preferring a "PROCESOS PRD" sheet) and
    .csv files. CSV cells are kept as text so the row normalizer sees the
    original number formatting.

    Args:
        source: Path, open binary file or raw bytes.
        filename: Name used to detect the format when source is not a path.
        sheet_name: Explicit workbook sheet to read.

    Returns:
        List of rows as header -> value dictionaries.

    Raises:
        FileLoadError: If the file cannot be read.
    """
    if isinstance(source, (str, Path)):
        filename = filename or str(source)
    elif isinstance(source, bytes):
        source = BytesIO(source)
    label = filename or "<upload>"

    try:
        if label.lower().endswith(".csv"):
            df = pd.read_csv(source, dtype=str, keep_default_na=False)
        else:
            workbook = pd.ExcelFile(source)
            chosen = _pick_sheet(workbook.sheet_names, sheet_name)
            logger.info(f"Reading sheet '{chosen}' from {label}")
            df = workbook.parse(chosen)
    except Exception as e:
        raise FileLoadError(label, e)

    df.columns = [str(c).strip() for c in df.columns]
    return df.to_dict(orient="records")


# Demo order list used by the sample-data endpoint and tests
SAMPLE_ROWS: list[dict[str, Any]] = [
    {
        "PEDIDO": "1402048642",
        "POS": 10,
        "PROYECTO": 'BOLSA ROGERS ENTERPRISES 10"X4"X7"75',
        "COMPONENTE": "BOLSA",
        "MATERIAL": "PP",
        "F PRD": "2025-01-15",
        "CTD PEDIDO": 21000,
        "PLIEGOS": 1050,
        "IMPRESION": True,
        "BARNIZ": True,
        "LAMINADO": False,
        "ESTAMPADO": False,
        "REALZADO": False,
        "TROQUELADO": True,
    },
    {
        "PEDIDO": "1402048677",
        "POS": 10,
        "PROYECTO": 'BOLSA FRED MEYER 6"X3.5"X3"',
        "COMPONENTE": "BOLSA",
        "MATERIAL": "COUCHE",
        "F PRD": "2025-01-20",
        "CTD PEDIDO": 39294,
        "PLIEGOS": 3600,
        "IMPRESION": True,
        "BARNIZ": False,
        "LAMINADO": True,
        "ESTAMPADO": True,
        "REALZADO": False,
        "TROQUELADO": True,
    },
    {
        "PEDIDO": "1402049207",
        "POS": 30,
        "PROYECTO": 'BOLSA PINOS JEWELERS 7"X5"X9"',
        "COMPONENTE": "BOLSA",
        "MATERIAL": "COUCHE",
        "F PRD": "2025-01-10",
        "CTD PEDIDO": 14400,
        "PLIEGOS": 1200,
        "IMPRESION": True,
        "BARNIZ": True,
        "LAMINADO": False,
        "ESTAMPADO": False,
        "REALZADO": True,
        "TROQUELADO": True,
    },
]
