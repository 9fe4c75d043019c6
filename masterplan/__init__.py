# MasterPlan Production Planning Engine - Core Package
# Version: 1.0.0

"""
Production planning engine for a packaging and printing operation.

Turns a production order sheet into per-item process task chains across
the production and assembly plants, schedules them greedily under
dependency and resource constraints, and keeps the resulting calendar
events in sync between connected clients and the event server.
"""

__version__ = "1.0.0"

from .errors import (
    MasterPlanError,
    ValidationError,
    ConfigurationError,
    FileLoadError,
    MissingDependencyError,
    SyncError,
    PersistenceError,
)

from .constants import (
    PlanningConstants,
    MaterialRule,
    Holiday,
    SyncSettings,
    build_constants,
    load_constants_from_yaml,
    load_planning_constants,
    save_constants_to_yaml,
)

from .data_loader import (
    ProductionItem,
    NormalizedRow,
    IngestionResult,
    normalize_row,
    normalize_rows,
    parse_number,
    parse_flag,
    load_production_sheet,
    SAMPLE_ROWS,
)

from .resources import (
    ResourcePool,
    ResourceTimelines,
    create_resource_pool,
)

from .process_graph import (
    ProcessTask,
    ItemTaskGraph,
    ProductionPlan,
    build_item_tasks,
    build_production_plan,
    generate_task_id,
)

from .scheduler import (
    WorkingCalendar,
    ScheduleResult,
    schedule_tasks,
    schedule_plan,
    summarize_schedule,
)

from .validator import validate_schedule

from .events import (
    CalendarEvent,
    EventStore,
    project_tasks,
    repair_duplicate_ids,
    generate_event_id,
)

from .persistence import (
    EventPersistence,
    JsonFilePersistence,
    InMemoryPersistence,
    ServerEventStore,
)

from .sync import (
    MergeMode,
    SyncResponse,
    CooldownState,
    SyncCoordinator,
    merge_events,
)

from .api_client import EventApiClient

from .logger import logger, configure_logging
