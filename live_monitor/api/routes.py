"""API routes for the live monitor."""

import asyncio
import logging
from typing import Awaitable, List, Optional

from fastapi import APIRouter, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import FileResponse, JSONResponse

from ..config import API_VERSION
from ..exceptions import InvalidCommandError
from ..models.alert import Alert
from ..models.monitoring import ActionOutcome, ConnectionInfo, MonitoringStats, Notice
from ..models.violation import StudentViolationSummary
from ..services.monitor import Monitor
from ..services.report_service import generate_violation_report
from .schemas import (
    BulkActionRequest,
    DeleteSummaryRequest,
    FlagSessionRequest,
    InvalidateRequest,
    PenaltyRequest,
    ReportRequest,
    ResolveAlertRequest,
    ResolveSummaryRequest,
    ResumePollingRequest,
    RetakeRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def get_monitor(request: Request) -> Monitor:
    return request.app.state.monitor


def _require_summary(monitor: Monitor, student_id: str, exam_id: str) -> StudentViolationSummary:
    summary = monitor.find_summary(student_id, exam_id)
    if summary is None:
        raise HTTPException(status_code=404, detail=f"No violations for student {student_id} in exam {exam_id}")
    return summary


async def _run_action(call: Awaitable[ActionOutcome]) -> ActionOutcome:
    try:
        outcome = await call
    except InvalidCommandError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if not outcome.success:
        raise HTTPException(status_code=502, detail=outcome.error)
    return outcome


@router.get("/")
async def root():
    """Root endpoint."""
    return {"message": "Live Exam Monitor API", "version": API_VERSION}


@router.get("/health")
async def health(request: Request):
    """Health check endpoint."""
    connection = get_monitor(request).connection()
    return {"status": "healthy", "mode": connection.mode.value, "connection": connection.status.value}


@router.get("/sessions")
async def list_sessions(request: Request, exam_id: Optional[str] = None):
    views = get_monitor(request).sessions_view(exam_id)
    return [
        {
            **view.session.model_dump(mode="json"),
            "time_remaining": view.time_remaining,
            "time_remaining_text": view.time_remaining_text,
            "authoritative": view.authoritative,
        }
        for view in views
    ]


@router.get("/alerts", response_model=List[Alert])
async def list_alerts(request: Request, exam_id: Optional[str] = None, limit: Optional[int] = None):
    return get_monitor(request).alerts_view(exam_id, limit)


@router.get("/stats", response_model=MonitoringStats)
async def stats(request: Request, exam_id: Optional[str] = None):
    return get_monitor(request).stats(exam_id)


@router.get("/notices", response_model=List[Notice])
async def notices(request: Request):
    return get_monitor(request).notices.list()


@router.get("/violations/summaries", response_model=List[StudentViolationSummary])
async def violation_summaries(request: Request, status: str = "all", risk: str = "all",
                              sort: str = "violations", refresh: bool = False):
    """Per-student violation summaries, filtered and sorted for review."""
    monitor = get_monitor(request)
    if refresh:
        await monitor.refresh_violations()
    try:
        return monitor.summaries(status, risk, sort)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/refresh")
async def refresh(request: Request):
    """Fetch a full snapshot now. Skipped while the push channel is active."""
    refreshed = await get_monitor(request).bridge.refresh_now()
    return {"refreshed": refreshed}


@router.post("/actions/resolve-alert", response_model=ActionOutcome)
async def resolve_alert(request: Request, body: ResolveAlertRequest):
    return await _run_action(get_monitor(request).actions.resolve_alert(body.alert_id))


@router.post("/actions/flag-session", response_model=ActionOutcome)
async def flag_session(request: Request, body: FlagSessionRequest):
    return await _run_action(get_monitor(request).actions.flag_session(body.session_id, body.reason))


@router.post("/actions/invalidate", response_model=ActionOutcome)
async def invalidate(request: Request, body: InvalidateRequest):
    return await _run_action(get_monitor(request).actions.invalidate_session(body.session_id, body.reason))


@router.post("/actions/penalty", response_model=ActionOutcome)
async def penalty(request: Request, body: PenaltyRequest):
    return await _run_action(get_monitor(request).actions.apply_penalty(body.session_id, body.penalty_pct))


@router.post("/actions/retake", response_model=ActionOutcome)
async def retake(request: Request, body: RetakeRequest):
    return await _run_action(get_monitor(request).actions.grant_retake(body.session_id, body.max_attempts))


@router.post("/actions/resolve-summary", response_model=ActionOutcome)
async def resolve_summary(request: Request, body: ResolveSummaryRequest):
    monitor = get_monitor(request)
    summary = _require_summary(monitor, body.student_id, body.exam_id)
    return await _run_action(monitor.actions.resolve_summary(summary))


@router.delete("/actions/violations/{violation_id}", response_model=ActionOutcome)
async def delete_violation(request: Request, violation_id: str):
    return await _run_action(get_monitor(request).actions.delete_violation(violation_id))


@router.post("/actions/delete-summary", response_model=ActionOutcome)
async def delete_summary(request: Request, body: DeleteSummaryRequest):
    monitor = get_monitor(request)
    summary = _require_summary(monitor, body.student_id, body.exam_id)
    return await _run_action(monitor.actions.delete_summary(summary))


@router.post("/actions/bulk")
async def bulk_action(request: Request, body: BulkActionRequest):
    """
    Apply one action to several students' summaries.
    With ``background`` set the commands run after the response is sent (202).
    """
    monitor = get_monitor(request)
    try:
        monitor.actions.check_bulk(body.action, body.penalty_pct)
    except InvalidCommandError as e:
        raise HTTPException(status_code=400, detail=str(e))
    summaries = [_require_summary(monitor, key.student_id, key.exam_id) for key in body.keys]

    call = monitor.actions.bulk(body.action, summaries, body.reason, body.penalty_pct)
    if body.background:
        monitor.actions.dispatch(call)
        return JSONResponse(status_code=202, content={"queued": len(summaries)})
    outcomes = await call
    return [outcome.model_dump(mode="json") for outcome in outcomes]


@router.post("/polling/resume", response_model=ConnectionInfo)
async def resume_polling(request: Request, body: Optional[ResumePollingRequest] = None):
    """Resume fallback polling after the credential was renewed."""
    monitor = get_monitor(request)
    monitor.bridge.resume_polling(body.token if body else None)
    return monitor.connection()


@router.post("/reports/violations")
async def violations_report(request: Request, body: Optional[ReportRequest] = None) -> FileResponse:
    """
    Generate a PDF report of the current violation summaries.
    Returns a FileResponse with the PDF; a JSON export is written next to it.
    """
    body = body or ReportRequest()
    try:
        summaries = get_monitor(request).summaries(body.status, body.risk, body.sort)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    report_path = generate_violation_report(summaries)
    return FileResponse(
        path=report_path,
        filename="violations_report.pdf",
        media_type="application/pdf"
    )


@router.websocket("/ws")
async def monitor_stream(websocket: WebSocket, exam_id: Optional[str] = None) -> None:
    """Stream the live view: one snapshot per tick and per state change."""
    await websocket.accept()
    monitor: Monitor = websocket.app.state.monitor
    subscription = monitor.subscribe(exam_id)
    logger.info(f"[CONNECTED] operator view (exam={exam_id or 'all'})")

    async def forward() -> None:
        while True:
            snapshot = await subscription.get()
            await websocket.send_json(snapshot.model_dump(mode="json"))

    sender = asyncio.create_task(forward())
    try:
        # Incoming messages are ignored; receiving only detects the close
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.info("[DISCONNECTED] operator view")
    finally:
        sender.cancel()
        # A send failure surfaces here instead of being left on the task
        for result in await asyncio.gather(sender, return_exceptions=True):
            if isinstance(result, Exception):
                logger.warning(f"[STREAM ERROR] operator view: {result}")
        monitor.unsubscribe(subscription)
