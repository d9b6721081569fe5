import asyncio

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from otplus.db import get_db
from otplus.domain import UserOverride
from otplus.errors import ApiError, OffloadError
from otplus.schemas import CalculateRequest, CalculateResponse, UserAnalysisRead
from otplus.services.analysis import calculate
from otplus.services.offload import MODE_SYNC, OffloadAdapter
from otplus.services.overrides import load_override_store
from otplus.settings import get_settings

router = APIRouter(tags=["analysis"])


def _load_persisted_overrides(db: Session, workspace_id: str) -> dict[str, UserOverride]:
    return load_override_store(db, workspace_id).snapshot()


@router.post("/api/analysis/calculate", response_model=CalculateResponse)
async def calculate_analysis(
    payload: CalculateRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> CalculateResponse:
    persisted: dict[str, UserOverride] = {}
    if payload.workspace_id:
        persisted = await asyncio.to_thread(_load_persisted_overrides, db, payload.workspace_id)

    snapshot = payload.to_snapshot(get_settings(), persisted)
    entries = payload.to_entries()
    date_range = payload.date_range()

    adapter: OffloadAdapter | None = getattr(request.app.state, "offload_adapter", None)
    mode = MODE_SYNC
    try:
        if adapter is None:
            results = await asyncio.to_thread(calculate, entries, snapshot, date_range)
        else:
            mode = adapter.mode
            results = await adapter.calculate(entries, snapshot, date_range)
    except OffloadError as exc:
        raise ApiError(status_code=502, code="CALCULATION_FAILED", message=str(exc)) from exc

    report_days = [day for result in results for day in result.days]
    if date_range is not None:
        start, end = date_range.start, date_range.end
    elif report_days:
        start, end = min(report_days), max(report_days)
    else:
        start, end = None, None

    return CalculateResponse(
        mode=mode,
        start=start,
        end=end,
        results=[UserAnalysisRead.from_domain(result) for result in results],
    )
