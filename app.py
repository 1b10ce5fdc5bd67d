"""
Transport Schedule Dashboard Service — Staff API (FastAPI)

Purpose
=======
Serve the daily transport schedule and staff announcements to the dashboard,
backed by the hosted database and its auth provider.

Key features
------------
- Day and week schedule loads; a failed load returns an empty, correctly
  dated schedule plus a warning instead of an error.
- Admin-only create/edit/delete for transports and announcements; the
  dashboard cache only changes after the database confirms.
- Unread announcement badge against a locally persisted "last viewed" time.
- CSV export of a day's schedule.

Run
---
$ uvicorn app:app --reload --port 8080

Environment
-----------
- PYTHON >= 3.10
- pip install fastapi uvicorn httpx pydantic
"""

from __future__ import annotations

import os
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, Optional

from fastapi import Body, FastAPI, HTTPException, Query, Response
from fastapi.responses import RedirectResponse

from announcements import UnreadCounter, WatermarkStore
from auth_client import AuthClient
from mutations import NOT_FOUND, REJECTED, UNAUTHENTICATED, MutationCoordinator, MutationOutcome
from schedule_cache import ScheduleCache
from schedule_errors import Forbidden, Unauthenticated
from schedule_export import build_schedule_csv, export_filename
from schedule_records import sort_by_priority
from session_gate import SessionGate
from store_client import StoreClient

# ---------------------------
# Config
# ---------------------------
DATA_DIRS = [Path(p) for p in os.getenv("DATA_DIRS", "/data").split(":")]
PRIMARY_DATA_DIR = DATA_DIRS[0]
WATERMARK_PATH = Path(
    os.getenv("WATERMARK_PATH", str(PRIMARY_DATA_DIR / "announcement_view.json"))
)
LOGIN_TIMEOUT_S = float(os.getenv("LOGIN_TIMEOUT_S", "8"))

# ---------------------------
# App & state
# ---------------------------
app = FastAPI(title="Transport Schedule Dashboard")


def _reload_views() -> None:
    """Drop every cached view so nothing loaded under the previous identity survives."""
    store = getattr(app.state, "store", None)
    if store is None:
        return
    app.state.cache = ScheduleCache(store)
    app.state.coordinator = MutationCoordinator(store, app.state.cache)


def init_services(
    store: StoreClient,
    auth: AuthClient,
    watermark_path: Path = WATERMARK_PATH,
) -> None:
    previous_gate = getattr(app.state, "gate", None)
    if previous_gate is not None:
        previous_gate.close()
    app.state.store = store
    app.state.auth = auth
    app.state.gate = SessionGate(
        auth,
        store,
        login_timeout_s=LOGIN_TIMEOUT_S,
        on_reload=_reload_views,
    )
    app.state.unread = UnreadCounter(WatermarkStore(watermark_path))
    _reload_views()


@app.on_event("startup")
async def init_clients() -> None:
    try:
        store = StoreClient.from_env()
        auth = AuthClient.from_env()
    except RuntimeError as exc:
        print(f"[startup] schedule store not configured: {exc}")
        return
    init_services(store, auth)
    await app.state.gate.restore()


@app.on_event("shutdown")
async def shutdown_clients() -> None:
    gate = getattr(app.state, "gate", None)
    if gate is not None:
        gate.close()
    for name in ("store", "auth"):
        client = getattr(app.state, name, None)
        if client is not None:
            await client.aclose()


def _service(name: str) -> Any:
    value = getattr(app.state, name, None)
    if value is None:
        raise HTTPException(status_code=503, detail="schedule store not configured")
    return value


def _require_admin() -> None:
    gate: SessionGate = _service("gate")
    try:
        gate.require_admin()
    except Unauthenticated as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc
    except Forbidden as exc:
        raise HTTPException(status_code=403, detail=str(exc)) from exc


def _parse_date_param(value: Optional[str], label: str) -> Optional[date]:
    if value is None:
        return None
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError:
        raise HTTPException(status_code=400, detail=f"invalid {label} format; expected YYYY-MM-DD")


async def _outcome_body(outcome: MutationOutcome, key: str) -> Dict[str, Any]:
    if outcome.ok:
        entity = outcome.entity.to_dict() if hasattr(outcome.entity, "to_dict") else outcome.entity
        return {"ok": True, key: entity}
    detail = str(outcome.error) if outcome.error else outcome.status
    if outcome.status == UNAUTHENTICATED:
        gate: SessionGate = _service("gate")
        await gate.expire()
        raise HTTPException(status_code=401, detail=detail)
    if outcome.status == REJECTED:
        raise HTTPException(status_code=400, detail=detail)
    if outcome.status == NOT_FOUND:
        raise HTTPException(status_code=404, detail=detail)
    raise HTTPException(status_code=502, detail=detail)


# ---------------------------
# Health
# ---------------------------
@app.get("/v1/health")
async def health():
    gate = getattr(app.state, "gate", None)
    return {
        "ok": getattr(app.state, "store", None) is not None,
        "authenticated": bool(gate and gate.is_authenticated),
    }


# ---------------------------
# REST: Transports
# ---------------------------
@app.get("/api/transports")
async def list_transports(day: Optional[str] = Query(None, alias="date")):
    cache: ScheduleCache = _service("cache")
    target = _parse_date_param(day, "date") or date.today()
    schedule = await cache.fetch_day(target)
    return schedule.to_dict()


@app.get("/api/schedule/week")
async def week_schedule(start: Optional[str] = Query(None)):
    cache: ScheduleCache = _service("cache")
    start_date = _parse_date_param(start, "start") or date.today()
    week = await cache.fetch_week(start_date)
    return {"start": week[0].date, "days": [day.to_dict() for day in week]}


@app.get("/api/transports/export.csv")
async def export_transports_csv(day: str = Query(..., alias="date")):
    cache: ScheduleCache = _service("cache")
    target = _parse_date_param(day, "date")
    schedule = await cache.fetch_day(target)
    content = build_schedule_csv(schedule.transports)
    headers = {"Content-Disposition": f'attachment; filename="{export_filename(target)}"'}
    if schedule.warning:
        headers["X-Schedule-Warning"] = schedule.warning
    return Response(content, media_type="text/csv; charset=utf-8", headers=headers)


@app.post("/api/transports")
async def create_transport(payload: Dict[str, Any] = Body(...)):
    _require_admin()
    coordinator: MutationCoordinator = _service("coordinator")
    outcome = await coordinator.add_transport(payload)
    return await _outcome_body(outcome, "transport")


@app.put("/api/transports/{transport_id}")
async def update_transport(transport_id: str, payload: Dict[str, Any] = Body(...)):
    _require_admin()
    coordinator: MutationCoordinator = _service("coordinator")
    outcome = await coordinator.update_transport(transport_id, payload)
    return await _outcome_body(outcome, "transport")


@app.delete("/api/transports/{transport_id}")
async def delete_transport(transport_id: str):
    _require_admin()
    coordinator: MutationCoordinator = _service("coordinator")
    outcome = await coordinator.delete_transport(transport_id)
    body = await _outcome_body(outcome, "deleted")
    day = (outcome.entity or {}).get("pickup_date")
    if day:
        cache: ScheduleCache = _service("cache")
        body["transports"] = [t.to_dict() for t in cache.cached_day(day) or []]
    return body


# ---------------------------
# REST: Announcements
# ---------------------------
@app.get("/api/announcements")
async def list_announcements(sort: str = Query("newest")):
    if sort not in {"newest", "priority"}:
        raise HTTPException(status_code=400, detail="sort must be 'newest' or 'priority'")
    cache: ScheduleCache = _service("cache")
    unread_counter: UnreadCounter = _service("unread")
    announcements, warning = await cache.load_announcements()
    unread = await unread_counter.count(announcements)
    if sort == "priority":
        announcements = sort_by_priority(announcements)
    return {
        "announcements": [a.to_dict() for a in announcements],
        "unread": unread,
        "warning": warning,
    }


@app.get("/api/announcements/unread")
async def unread_announcements():
    cache: ScheduleCache = _service("cache")
    unread_counter: UnreadCounter = _service("unread")
    announcements, warning = await cache.load_announcements()
    return {"unread": await unread_counter.count(announcements), "warning": warning}


@app.post("/api/announcements/viewed")
async def mark_announcements_viewed():
    unread_counter: UnreadCounter = _service("unread")
    stamp = await unread_counter.mark_viewed()
    return {"ok": True, "last_viewed": stamp}


@app.post("/api/announcements")
async def create_announcement(payload: Dict[str, Any] = Body(...)):
    _require_admin()
    coordinator: MutationCoordinator = _service("coordinator")
    outcome = await coordinator.add_announcement(payload)
    return await _outcome_body(outcome, "announcement")


@app.put("/api/announcements/{announcement_id}")
async def update_announcement(announcement_id: str, payload: Dict[str, Any] = Body(...)):
    _require_admin()
    coordinator: MutationCoordinator = _service("coordinator")
    outcome = await coordinator.update_announcement(announcement_id, payload)
    return await _outcome_body(outcome, "announcement")


@app.delete("/api/announcements/{announcement_id}")
async def delete_announcement(announcement_id: str):
    _require_admin()
    coordinator: MutationCoordinator = _service("coordinator")
    outcome = await coordinator.delete_announcement(announcement_id)
    return await _outcome_body(outcome, "deleted")


# ---------------------------
# Session
# ---------------------------
@app.get("/api/auth")
async def auth_status():
    gate: SessionGate = _service("gate")
    user = gate.current_user
    return {
        "authenticated": gate.is_authenticated,
        "can_administer": gate.can_administer,
        "user": user.to_dict() if user else None,
    }


@app.post("/api/auth/login")
async def auth_login(payload: Dict[str, Any] = Body(...)):
    gate: SessionGate = _service("gate")
    email = (payload.get("email") or "").strip()
    password = payload.get("password") or ""
    if not await gate.login(email, password):
        raise HTTPException(status_code=401, detail="Incorrect email or password.")
    user = gate.current_user
    return {"ok": True, "user": user.to_dict() if user else None}


@app.post("/api/auth/logout")
async def auth_logout():
    gate: SessionGate = _service("gate")
    await gate.logout()
    return RedirectResponse("/", status_code=303)
