"""
MasterPlan Production Planning - FastAPI Web Backend
"""

from datetime import date, datetime
from pathlib import Path
from typing import Any, Optional

from fastapi import FastAPI, HTTPException, File, UploadFile, Request
from fastapi.responses import HTMLResponse
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from masterplan import __version__
from masterplan.constants import PLANTS, PlanningConstants, load_planning_constants
from masterplan.data_loader import SAMPLE_ROWS, load_production_sheet
from masterplan.errors import MasterPlanError
from masterplan.events import CalendarEvent, parse_event_time, project_tasks
from masterplan.logger import configure_logging, logger
from masterplan.persistence import EventPersistence, JsonFilePersistence, ServerEventStore
from masterplan.process_graph import build_production_plan
from masterplan.resources import create_resource_pool
from masterplan.scheduler import WorkingCalendar, schedule_plan, summarize_schedule
from masterplan.sync import SyncResponse
from masterplan.validator import validate_schedule


SHEET_EXTENSIONS = (".xlsx", ".csv")


def get_base_path():
    return Path(__file__).parent.parent


def get_config_path():
    return get_base_path() / "config" / "planning.yaml"


class EventsPayload(BaseModel):
    events: list[dict[str, Any]]


class PlanRequest(BaseModel):
    rows: list[dict[str, Any]]
    epoch: Optional[datetime] = None
    today: Optional[date] = None
    store: bool = True


def _parse_events(raw_events: list[dict[str, Any]]) -> list[CalendarEvent]:
    try:
        return [CalendarEvent.from_dict(raw) for raw in raw_events]
    except MasterPlanError as e:
        raise HTTPException(status_code=400, detail=str(e))


def _run_plan(
    request: Request,
    rows: list[dict[str, Any]],
    epoch: datetime | None = None,
    today: date | None = None,
    store: bool = True
) -> dict:
    """Normalize, build, schedule and project rows; optionally store the events."""
    state = request.app.state
    constants: PlanningConstants = state.constants

    try:
        plan = build_production_plan(rows, constants, pool=state.pool, today=today)
        result = schedule_plan(plan, epoch=epoch, constants=constants)
    except MasterPlanError as e:
        raise HTTPException(status_code=400, detail=str(e))

    # Line rotation carries over to the next plan
    state.pool = plan.pool

    events = project_tasks(result.tasks)
    violations = validate_schedule(result.tasks, WorkingCalendar.from_constants(constants))
    for violation in violations:
        logger.warning(f"Schedule violation: {violation}")

    if store:
        state.store.overwrite(events)

    return {
        "success": True,
        "items": len(plan.graphs),
        "skipped": plan.skipped_count,
        "events": [e.to_dict() for e in events],
        "summary": summarize_schedule(result),
        "violations": violations,
        "stored": store,
    }


def create_app(
    constants: PlanningConstants | None = None,
    persistence: EventPersistence | None = None
) -> FastAPI:
    """Build the FastAPI application.

    Args:
        constants: Planning constants (loaded from config/planning.yaml if None).
        persistence: Event storage back end (JSON file from the config if None).

    Returns:
        Configured FastAPI app with its event store on app.state.
    """
    if constants is None:
        config_path = get_config_path()
        constants = load_planning_constants(config_path if config_path.exists() else None)
    configure_logging(constants.log_level, constants.log_file)

    if persistence is None:
        persistence_path = Path(constants.persistence_path)
        if not persistence_path.is_absolute():
            persistence_path = get_base_path() / persistence_path
        persistence = JsonFilePersistence(persistence_path)

    app = FastAPI(
        title="MasterPlan Production Planning",
        description="Production task scheduling and calendar event sync",
        version=__version__
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.constants = constants
    app.state.store = ServerEventStore(persistence)
    app.state.pool = create_resource_pool(constants)
    logger.info(f"Event store ready with {len(app.state.store)} events")

    @app.get("/")
    async def root():
        """Serve a minimal landing page."""
        return HTMLResponse(content="<h1>MasterPlan Production Planning</h1>")

    @app.get("/api/health")
    async def health(request: Request):
        return {"status": "ok", **request.app.state.store.snapshot()}

    @app.get("/api/config")
    async def get_config(request: Request):
        """Get the planning configuration used by the server."""
        c: PlanningConstants = request.app.state.constants
        return {
            "version": __version__,
            "plants": list(PLANTS),
            "process_order": list(c.process_order),
            "machines": {k: list(v) for k, v in c.machines.items()},
            "assembly_lines": list(c.assembly_lines),
            "working_hours": {"start": c.work_start_hour, "end": c.work_end_hour},
            "work_days": sorted(c.work_days),
            "holidays": [{"label": h.label, "date": h.date.isoformat()} for h in c.holiday_list],
            "sync": {
                "interval_seconds": c.sync.interval_seconds,
                "cooldown_seconds": c.sync.cooldown_seconds,
                "merge_mode": c.sync.merge_mode,
            },
        }

    # ============ EVENT ENDPOINTS ============

    @app.get("/api/events")
    async def get_events(request: Request):
        store: ServerEventStore = request.app.state.store
        return {
            "events": [e.to_dict() for e in store.events],
            "lastUpdated": store.modified_at.isoformat(),
        }

    @app.post("/api/events")
    async def save_events(payload: EventsPayload, request: Request):
        """Overwrite the whole event collection."""
        events = _parse_events(payload.events)
        repaired = request.app.state.store.overwrite(events)
        return {"success": True, "count": len(request.app.state.store), "repaired": repaired}

    @app.get("/api/events/sync")
    async def sync_events(request: Request, since: Optional[str] = None):
        """Delta fetch: the full collection if anything changed after since."""
        since_time = None
        if since:
            try:
                since_time = parse_event_time(since, "since")
            except MasterPlanError as e:
                raise HTTPException(status_code=400, detail=str(e))

        events, server_time, has_changes = request.app.state.store.changes_since(since_time)
        return SyncResponse(events, server_time, has_changes).to_dict()

    @app.put("/api/events/{event_id}")
    async def upsert_event(event_id: str, body: dict[str, Any], request: Request):
        """Create or replace a single event."""
        if body.get("id") != event_id:
            raise HTTPException(status_code=400, detail="Event id must match the URL")
        event = _parse_events([body])[0]
        created = request.app.state.store.upsert(event)
        return {"success": True, "created": created, "event": event.to_dict()}

    @app.delete("/api/events/{event_id}")
    async def delete_event(event_id: str, request: Request):
        if not request.app.state.store.delete(event_id):
            raise HTTPException(status_code=404, detail=f"Event {event_id} not found")
        return {"success": True, "message": f"Deleted event {event_id}"}

    # ============ PLANNING ENDPOINTS ============

    @app.post("/api/plan")
    async def plan_rows(payload: PlanRequest, request: Request):
        """Schedule production rows sent as JSON."""
        return _run_plan(request, payload.rows, payload.epoch, payload.today, payload.store)

    @app.post("/api/upload")
    async def upload_production_sheet(request: Request, file: UploadFile = File(...)):
        """Upload a production order sheet and schedule it."""
        filename = file.filename or ""
        if not filename.lower().endswith(SHEET_EXTENSIONS):
            raise HTTPException(status_code=400, detail="File must be Excel (.xlsx) or CSV")

        content = await file.read()
        try:
            rows = load_production_sheet(content, filename=filename)
        except MasterPlanError as e:
            raise HTTPException(status_code=400, detail=f"Failed to process file: {e}")

        logger.info(f"Uploaded {filename} with {len(rows)} rows")
        return _run_plan(request, rows)

    @app.post("/api/sample")
    async def load_sample(request: Request):
        """Schedule the built-in demo order list."""
        return _run_plan(request, [dict(row) for row in SAMPLE_ROWS])

    return app


app = create_app()


if __name__ == "__main__":
    import os
    import uvicorn
    host = os.getenv("MASTERPLAN_HOST", "127.0.0.1")
    port = int(os.getenv("MASTERPLAN_PORT", "8000"))
    uvicorn.run("web.app:app", host=host, port=port)
