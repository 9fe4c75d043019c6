# Load and structure planning constants from YAML config file.
# Version: 1.0.0
# Provides lookups for process rates, machine pools, material rules and the working calendar.

from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path
from typing import Any, Literal

import yaml

from .errors import ConfigurationError, FileLoadError


# Type aliases for clarity
ProcessKind = Literal[
    "sheet_prep", "print", "varnish", "laminate",
    "foil_stamp", "emboss", "die_cut", "assembly"
]
Plant = Literal["production", "assembly"]
Priority = Literal["high", "medium", "low"]
TaskStatus = Literal["pending", "in_progress", "completed", "cancelled"]
MergeModeName = Literal["merge", "replace"]

# Canonical production order (assembly is always appended last)
PRODUCTION_PROCESSES: tuple[ProcessKind, ...] = (
    "sheet_prep", "print", "varnish", "laminate", "foil_stamp", "emboss", "die_cut"
)
ASSEMBLY: ProcessKind = "assembly"
PLANTS: tuple[Plant, ...] = ("production", "assembly")
PRIORITIES: tuple[Priority, ...] = ("high", "medium", "low")
TASK_STATUSES: tuple[TaskStatus, ...] = ("pending", "in_progress", "completed", "cancelled")

DEFAULT_CONFIG: dict[str, Any] = {
    "working_hours": {"start": 8, "end": 18},
    "work_days": [0, 1, 2, 3, 4],
    "holidays": [],
    "priority_thresholds": {"high_days": 3, "medium_days": 7},
    "process_order": list(PRODUCTION_PROCESSES),
    # Hours per 100 sheets
    "process_rates": {
        "sheet_prep": 0.2,
        "print": 0.5,
        "varnish": 0.3,
        "laminate": 0.4,
        "foil_stamp": 0.6,
        "emboss": 0.5,
        "die_cut": 0.7,
    },
    "default_process_rate": 0.5,
    "sheets_per_rate_unit": 100,
    "quantity_addend_divisor": 5000,
    "assembly_units_per_hour": 1000,
    "machines": {
        "sheet_prep": ["GUILLOTINA_01"],
        "print": ["IMPRESION_01", "IMPRESION_02", "IMPRESION_03"],
        "varnish": ["BARNIZ_01", "BARNIZ_02"],
        "laminate": ["LAMINADO_01", "LAMINADO_02"],
        "foil_stamp": ["ESTAMPADO_01"],
        "emboss": ["REALZADO_01"],
        "die_cut": ["TROQUELADO_01", "TROQUELADO_02"],
    },
    "assembly_lines": ["MOEX", "YOBEL", "MELISSA", "CAJA 1", "CAJA 2", "CAJA 3"],
    "material_fallbacks": [
        {"match": "PP", "processes": ["print", "die_cut"]},
        {"match": "COUCHE", "processes": ["print", "varnish", "die_cut"]},
        {"match": "CMPC", "processes": ["print", "laminate", "die_cut"]},
    ],
    "default_processes": ["print", "die_cut"],
    "column_aliases": {
        "order_id": ["PO", "PO_ID", "PEDIDO", "ORDER"],
        "project": ["PROYECTO", "PROJECT", "DESCRIPCION"],
        "component": ["COMPONENTE", "COMPONENT", "TIPO"],
        "position": ["POS", "POSICION", "LINE"],
        "material": ["MATERIAL", "MAT", "TYPE"],
        "due_date": ["F PRD", "FECHA", "DATE", "REQ DATE"],
        "quantity": ["CTD PEDIDO", "CANTIDAD", "QTY", "QUANTITY", "QTY + OVER"],
        "sheets": ["PLIEGOS", "SHEETS", "HOJAS"],
        "unit_price": [
            "$/UND", "$ / UND", "$/und", "PRECIO", "PRICE", "UNIT_PRICE", "PRECIO UNITARIO"
        ],
        "update_status": ["UPDATE", "ESTADO", "STATUS"],
    },
    "flag_aliases": {
        "sheet_prep": ["CORTE", "SHEET_PREP"],
        "print": ["IMPRESION", "IMPRESIÓN", "PRINT"],
        "varnish": ["BARNIZ", "VARNISH"],
        "laminate": ["LAMINADO", "LAMINATE"],
        "foil_stamp": ["ESTAMPADO", "FOIL_STAMP"],
        "emboss": ["REALZADO", "EMBOSS"],
        "die_cut": ["TROQUELADO", "DIE_CUT"],
    },
    "sync": {
        "interval_seconds": 5.0,
        "cooldown_seconds": 2.0,
        "merge_mode": "merge",
        "base_url": "http://localhost:8000",
        "timeout_seconds": 10.0,
    },
    "persistence": {"path": "data/events.json"},
    "logging": {"level": "INFO", "file": None},
}


@dataclass(frozen=True)
class MaterialRule:
    """Fallback process subset for items with no process flag set.

    Attributes:
        match: Substring looked up in the upper-cased material code.
        processes: Process kinds implied by the material, in canonical order.
    """
    match: str
    processes: tuple[ProcessKind, ...]


@dataclass(frozen=True)
class Holiday:
    """Plant closure date.

    Attributes:
        label: Human-readable name.
        date: The date of the closure.
    """
    label: str
    date: date


@dataclass(frozen=True)
class SyncSettings:
    """Settings for the event sync loop.

    Attributes:
        interval_seconds: Delay between delta fetches.
        cooldown_seconds: Grace period after a local edit during which merges are suppressed.
        merge_mode: "merge" (identity merge) or "replace" (wholesale replace).
        base_url: Root URL of the event server.
        timeout_seconds: HTTP timeout for each request.
    """
    interval_seconds: float = 5.0
    cooldown_seconds: float = 2.0
    merge_mode: MergeModeName = "merge"
    base_url: str = "http://localhost:8000"
    timeout_seconds: float = 10.0


@dataclass
class PlanningConstants:
    """Container for all planning constants loaded from YAML.

    Attributes:
        work_start_hour: First working hour of the day.
        work_end_hour: Hour at which the working day ends.
        work_days: Weekday numbers (Monday=0) that are working days.
        holidays: Set of closure dates.
        holiday_list: Labelled closure dates.
        high_priority_days: Items due within this many days are high priority.
        medium_priority_days: Items due within this many days are medium priority.
        process_order: Canonical production process order.
        process_rates: Hours per sheets_per_rate_unit sheets, by process kind.
        default_process_rate: Rate used for process kinds without an entry.
        sheets_per_rate_unit: Sheet count the rates refer to.
        quantity_addend_divisor: Units per extra hour added to production tasks.
        assembly_units_per_hour: Units assembled per hour.
        machines: Machine pool per production process kind.
        assembly_lines: Round-robin pool of assembly lines.
        material_fallbacks: Ordered material rules, first match wins.
        default_processes: Processes used when no material rule matches.
        column_aliases: Accepted header aliases per logical field.
        flag_aliases: Accepted header aliases per process flag.
        sync: Sync loop settings.
        persistence_path: JSON file used by the server's event store.
        log_level: Logging level name.
        log_file: Optional log file path.
    """
    work_start_hour: int
    work_end_hour: int
    work_days: frozenset[int]
    holidays: set[date]
    holiday_list: list[Holiday]
    high_priority_days: int
    medium_priority_days: int
    process_order: tuple[ProcessKind, ...]
    process_rates: dict[str, float]
    default_process_rate: float
    sheets_per_rate_unit: int
    quantity_addend_divisor: float
    assembly_units_per_hour: int
    machines: dict[str, tuple[str, ...]]
    assembly_lines: tuple[str, ...]
    material_fallbacks: list[MaterialRule]
    default_processes: tuple[ProcessKind, ...]
    column_aliases: dict[str, tuple[str, ...]]
    flag_aliases: dict[str, tuple[str, ...]]
    sync: SyncSettings = field(default_factory=SyncSettings)
    persistence_path: str = "data/events.json"
    log_level: str = "INFO"
    log_file: str | None = None

    def get_process_rate(self, process: str) -> float:
        """Get the base rate (hours per rate unit of sheets) for a process kind."""
        return self.process_rates.get(process, self.default_process_rate)

    def get_default_machine(self, process: str) -> str:
        """Get the default machine for a production process kind.

        Args:
            process: Production process kind.

        Returns:
            First machine of the process kind's pool.

        Raises:
            ConfigurationError: If the process kind has no machine pool.
        """
        pool = self.machines.get(process)
        if not pool:
            raise ConfigurationError("machines", f"No machine pool for process '{process}'")
        return pool[0]

    def get_fallback_processes(self, material: str) -> tuple[ProcessKind, ...]:
        """Derive the process subset implied by a material code.

        Args:
            material: Material code from the production row.

        Returns:
            Process kinds of the first matching rule, or the default subset.
        """
        material_upper = (material or "").upper()
        for rule in self.material_fallbacks:
            if rule.match.upper() in material_upper:
                return rule.processes
        return self.default_processes

    def is_business_day(self, check_date: date) -> bool:
        """Check if a date is a working day.

        Args:
            check_date: Date to check.

        Returns:
            True if a configured work day and not a holiday.
        """
        if check_date.weekday() not in self.work_days:
            return False
        if check_date in self.holidays:
            return False
        return True


def _merge_config(defaults: dict[str, Any], overrides: dict[str, Any]) -> dict[str, Any]:
    """Overlay YAML values on the defaults, one level of nested dicts deep."""
    merged = dict(defaults)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(defaults.get(key), dict):
            nested = dict(defaults[key])
            nested.update(value)
            merged[key] = nested
        else:
            merged[key] = value
    return merged


def _check_processes(source: str, processes: list[str]) -> tuple[ProcessKind, ...]:
    unknown = [p for p in processes if p not in PRODUCTION_PROCESSES]
    if unknown:
        raise ConfigurationError(source, f"Unknown process kind(s): {', '.join(unknown)}")
    return tuple(processes)


def _parse_holiday(entry: dict[str, Any]) -> Holiday:
    raw = entry.get("date")
    if isinstance(raw, datetime):
        holiday_date = raw.date()
    elif isinstance(raw, date):
        holiday_date = raw
    else:
        try:
            holiday_date = datetime.strptime(str(raw), "%Y-%m-%d").date()
        except ValueError:
            raise ConfigurationError("holidays", f"Invalid date {raw!r}")
    return Holiday(label=str(entry.get("label", "")), date=holiday_date)


def build_constants(data: dict[str, Any] | None = None) -> PlanningConstants:
    """Build PlanningConstants from a (partial) config dictionary.

    Keys missing from data take the built-in defaults.

    Args:
        data: Parsed YAML mapping, or None for pure defaults.

    Returns:
        Validated PlanningConstants.

    Raises:
        ConfigurationError: If any section is malformed.
    """
    if data is not None and not isinstance(data, dict):
        raise ConfigurationError("planning.yaml", "Top level must be a mapping")
    cfg = _merge_config(DEFAULT_CONFIG, data or {})

    hours = cfg["working_hours"]
    start, end = int(hours["start"]), int(hours["end"])
    if not 0 <= start < end <= 24:
        raise ConfigurationError("working_hours", f"Invalid range {start}-{end}")

    work_days = frozenset(int(d) for d in cfg["work_days"])
    if not work_days or any(d < 0 or d > 6 for d in work_days):
        raise ConfigurationError("work_days", "Must list weekday numbers 0-6")

    holiday_list = [_parse_holiday(h) for h in cfg["holidays"] or []]

    thresholds = cfg["priority_thresholds"]
    high_days = int(thresholds["high_days"])
    medium_days = int(thresholds["medium_days"])
    if high_days > medium_days:
        raise ConfigurationError("priority_thresholds", "high_days cannot exceed medium_days")

    process_order = _check_processes("process_order", list(cfg["process_order"]))
    if sorted(process_order) != sorted(PRODUCTION_PROCESSES):
        raise ConfigurationError(
            "process_order", "Must list every production process exactly once"
        )

    machines = {kind: tuple(pool) for kind, pool in cfg["machines"].items()}
    for kind in process_order:
        if not machines.get(kind):
            raise ConfigurationError("machines", f"No machine pool for process '{kind}'")

    assembly_lines = tuple(cfg["assembly_lines"])
    if not assembly_lines:
        raise ConfigurationError("assembly_lines", "At least one assembly line is required")

    material_fallbacks = [
        MaterialRule(
            match=str(rule["match"]),
            processes=_check_processes(f"material_fallbacks[{rule['match']}]", list(rule["processes"])),
        )
        for rule in cfg["material_fallbacks"]
    ]
    default_processes = _check_processes("default_processes", list(cfg["default_processes"]))
    if not default_processes:
        raise ConfigurationError("default_processes", "Must contain at least one process")

    sync_cfg = cfg["sync"]
    merge_mode = str(sync_cfg["merge_mode"]).lower()
    if merge_mode not in ("merge", "replace"):
        raise ConfigurationError("sync.merge_mode", f"Must be 'merge' or 'replace', got {merge_mode!r}")
    sync = SyncSettings(
        interval_seconds=float(sync_cfg["interval_seconds"]),
        cooldown_seconds=float(sync_cfg["cooldown_seconds"]),
        merge_mode=merge_mode,
        base_url=str(sync_cfg["base_url"]),
        timeout_seconds=float(sync_cfg["timeout_seconds"]),
    )

    return PlanningConstants(
        work_start_hour=start,
        work_end_hour=end,
        work_days=work_days,
        holidays={h.date for h in holiday_list},
        holiday_list=holiday_list,
        high_priority_days=high_days,
        medium_priority_days=medium_days,
        process_order=process_order,
        process_rates={k: float(v) for k, v in cfg["process_rates"].items()},
        default_process_rate=float(cfg["default_process_rate"]),
        sheets_per_rate_unit=int(cfg["sheets_per_rate_unit"]),
        quantity_addend_divisor=float(cfg["quantity_addend_divisor"]),
        assembly_units_per_hour=int(cfg["assembly_units_per_hour"]),
        machines=machines,
        assembly_lines=assembly_lines,
        material_fallbacks=material_fallbacks,
        default_processes=default_processes,
        column_aliases={k: tuple(v) for k, v in cfg["column_aliases"].items()},
        flag_aliases={k: tuple(v) for k, v in cfg["flag_aliases"].items()},
        sync=sync,
        persistence_path=str(cfg["persistence"]["path"]),
        log_level=str(cfg["logging"]["level"]),
        log_file=cfg["logging"].get("file"),
    )


def load_constants_from_yaml(yaml_path: str | Path) -> PlanningConstants:
    """Load planning constants from YAML file.

    Args:
        yaml_path: Path to the YAML config file.

    Returns:
        PlanningConstants object with all loaded data.

    Raises:
        FileLoadError: If file cannot be read.
        ConfigurationError: If file format is invalid.
    """
    yaml_path = Path(yaml_path)

    try:
        with open(yaml_path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise FileLoadError(str(yaml_path), e)

    return build_constants(data)


def load_planning_constants(path: str | Path | None = None) -> PlanningConstants:
    """Load planning constants, falling back to built-in defaults.

    Args:
        path: Optional path to a YAML config file.

    Returns:
        PlanningConstants object.
    """
    if path is None:
        return build_constants()
    return load_constants_from_yaml(path)


def save_constants_to_yaml(constants: PlanningConstants, yaml_path: str | Path) -> None:
    """Save planning constants to YAML file.

    Args:
        constants: PlanningConstants object to save.
        yaml_path: Path to save the YAML config file.
    """
    data = {
        'working_hours': {'start': constants.work_start_hour, 'end': constants.work_end_hour},
        'work_days': sorted(constants.work_days),
        'holidays': [
            {'label': h.label, 'date': h.date.isoformat()}
            for h in constants.holiday_list
        ],
        'priority_thresholds': {
            'high_days': constants.high_priority_days,
            'medium_days': constants.medium_priority_days,
        },
        'process_order': list(constants.process_order),
        'process_rates': dict(constants.process_rates),
        'default_process_rate': constants.default_process_rate,
        'sheets_per_rate_unit': constants.sheets_per_rate_unit,
        'quantity_addend_divisor': constants.quantity_addend_divisor,
        'assembly_units_per_hour': constants.assembly_units_per_hour,
        'machines': {k: list(v) for k, v in constants.machines.items()},
        'assembly_lines': list(constants.assembly_lines),
        'material_fallbacks': [
            {'match': r.match, 'processes': list(r.processes)}
            for r in constants.material_fallbacks
        ],
        'default_processes': list(constants.default_processes),
        'column_aliases': {k: list(v) for k, v in constants.column_aliases.items()},
        'flag_aliases': {k: list(v) for k, v in constants.flag_aliases.items()},
        'sync': {
            'interval_seconds': constants.sync.interval_seconds,
            'cooldown_seconds': constants.sync.cooldown_seconds,
            'merge_mode': constants.sync.merge_mode,
            'base_url': constants.sync.base_url,
            'timeout_seconds': constants.sync.timeout_seconds,
        },
        'persistence': {'path': constants.persistence_path},
        'logging': {'level': constants.log_level, 'file': constants.log_file},
    }

    yaml_path = Path(yaml_path)
    with open(yaml_path, 'w', encoding='utf-8') as f:
        yaml.dump(data, f, default_flow_style=False, sort_keys=False, allow_unicode=True)
