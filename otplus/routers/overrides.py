from datetime import date

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from otplus.db import get_db
from otplus.errors import ApiError
from otplus.schemas import (
    OverrideCopyGlobalRequest,
    OverrideFieldUpdateRequest,
    OverrideModeUpdateRequest,
    UserOverrideRead,
    WorkspaceOverridesRead,
)
from otplus.services.overrides import OverrideStore, load_override_store, save_override_store

router = APIRouter(tags=["overrides"])


def _apply_or_raise(
    db: Session,
    workspace_id: str,
    user_id: str,
    store: OverrideStore,
    accepted: bool,
) -> UserOverrideRead:
    if not accepted:
        raise ApiError(
            status_code=422,
            code="INVALID_OVERRIDE",
            message="Override value was rejected.",
        )
    save_override_store(db, workspace_id, store, user_ids=[user_id])
    return UserOverrideRead(workspace_id=workspace_id, user_id=user_id, override=store.get(user_id))


@router.get("/api/overrides/{workspace_id}", response_model=WorkspaceOverridesRead)
def list_overrides(workspace_id: str, db: Session = Depends(get_db)) -> WorkspaceOverridesRead:
    store = load_override_store(db, workspace_id)
    return WorkspaceOverridesRead(workspace_id=workspace_id, overrides=store.as_dict())


@router.put("/api/overrides/{workspace_id}/{user_id}/mode", response_model=UserOverrideRead)
def update_override_mode(
    workspace_id: str,
    user_id: str,
    payload: OverrideModeUpdateRequest,
    db: Session = Depends(get_db),
) -> UserOverrideRead:
    store = load_override_store(db, workspace_id)
    accepted = store.set_override_mode(user_id, payload.mode)
    return _apply_or_raise(db, workspace_id, user_id, store, accepted)


@router.put("/api/overrides/{workspace_id}/{user_id}", response_model=UserOverrideRead)
def update_global_override(
    workspace_id: str,
    user_id: str,
    payload: OverrideFieldUpdateRequest,
    db: Session = Depends(get_db),
) -> UserOverrideRead:
    store = load_override_store(db, workspace_id)
    accepted = store.update_override(user_id, payload.field, payload.value)
    return _apply_or_raise(db, workspace_id, user_id, store, accepted)


@router.put("/api/overrides/{workspace_id}/{user_id}/days/{day}", response_model=UserOverrideRead)
def update_per_day_override(
    workspace_id: str,
    user_id: str,
    day: date,
    payload: OverrideFieldUpdateRequest,
    db: Session = Depends(get_db),
) -> UserOverrideRead:
    store = load_override_store(db, workspace_id)
    accepted = store.update_per_day_override(user_id, day, payload.field, payload.value)
    return _apply_or_raise(db, workspace_id, user_id, store, accepted)


@router.put("/api/overrides/{workspace_id}/{user_id}/weekdays/{weekday}", response_model=UserOverrideRead)
def update_weekday_override(
    workspace_id: str,
    user_id: str,
    weekday: str,
    payload: OverrideFieldUpdateRequest,
    db: Session = Depends(get_db),
) -> UserOverrideRead:
    store = load_override_store(db, workspace_id)
    accepted = store.set_weekday_override(user_id, weekday, payload.field, payload.value)
    return _apply_or_raise(db, workspace_id, user_id, store, accepted)


@router.post("/api/overrides/{workspace_id}/{user_id}/copy-global", response_model=UserOverrideRead)
def copy_global_override(
    workspace_id: str,
    user_id: str,
    payload: OverrideCopyGlobalRequest,
    db: Session = Depends(get_db),
) -> UserOverrideRead:
    store = load_override_store(db, workspace_id)
    if payload.target == "per_day":
        accepted = store.copy_global_to_per_day(user_id, payload.days)
    else:
        accepted = store.copy_global_to_weekly(user_id)
    return _apply_or_raise(db, workspace_id, user_id, store, accepted)


@router.delete("/api/overrides/{workspace_id}/{user_id}", response_model=UserOverrideRead)
def clear_user_override(workspace_id: str, user_id: str, db: Session = Depends(get_db)) -> UserOverrideRead:
    store = load_override_store(db, workspace_id)
    if not store.clear_user(user_id):
        raise ApiError(status_code=404, code="OVERRIDE_NOT_FOUND", message="No override stored for user.")
    save_override_store(db, workspace_id, store, user_ids=[user_id])
    return UserOverrideRead(workspace_id=workspace_id, user_id=user_id, override={})
