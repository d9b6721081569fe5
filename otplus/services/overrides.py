"""Per-user override storage with validated mutation.

The store keeps plain JSON-compatible dictionaries so it can be persisted
as-is.  One user record looks like::

    {
        "mode": "per_day",
        "capacity": 6.0,
        "per_day": {"2024-03-04": {"capacity": 4.0}},
        "weekday": {"FRIDAY": {"multiplier": 2.0}},
    }

Every mutation validates first and returns ``False`` without touching the
stored state when the input is rejected.
"""

from __future__ import annotations

import copy
import logging
import math
from collections.abc import Iterable, Mapping
from datetime import date
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from otplus.domain import WEEKDAY_NAMES, DayOverride, OverrideMode, UserOverride
from otplus.models import OverrideRecord

logger = logging.getLogger("otplus.overrides")

OVERRIDE_FIELDS = ("capacity", "multiplier", "tier2_threshold", "tier2_multiplier")

_FIELD_MINIMUMS = {
    "capacity": 0.0,
    "multiplier": 1.0,
    "tier2_threshold": 0.0,
    "tier2_multiplier": 1.0,
}


def parse_override_value(field_name: str, value: Any) -> float | None:
    """Return the validated numeric value, or ``None`` when the field is cleared.

    Raises ``ValueError`` for unknown fields and for values that are not
    finite numbers at or above the field minimum.
    """
    if field_name not in _FIELD_MINIMUMS:
        raise ValueError(f"Unknown override field: {field_name}")
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError("Boolean is not a valid override value")
    raw = str(value).strip()
    if not raw:
        return None
    number = float(raw)
    if not math.isfinite(number):
        raise ValueError("Override value must be finite")
    if number < _FIELD_MINIMUMS[field_name]:
        raise ValueError(f"{field_name} must be >= {_FIELD_MINIMUMS[field_name]:g}")
    return number


def normalize_day(value: date | str) -> str:
    if isinstance(value, date):
        return value.isoformat()
    return date.fromisoformat(str(value).strip()).isoformat()


def normalize_weekday(value: str) -> str:
    name = str(value).strip().upper()
    if name not in WEEKDAY_NAMES:
        raise ValueError(f"Unknown weekday: {value}")
    return name


def _assign(bucket: dict[str, Any], field_name: str, value: float | None) -> None:
    if value is None:
        bucket.pop(field_name, None)
    else:
        bucket[field_name] = value


def _day_override(payload: Mapping[str, Any]) -> DayOverride:
    return DayOverride(**{name: payload.get(name) for name in OVERRIDE_FIELDS})


class OverrideStore:
    def __init__(self, data: Mapping[str, Mapping[str, Any]] | None = None) -> None:
        self._data: dict[str, dict[str, Any]] = copy.deepcopy({key: dict(value) for key, value in (data or {}).items()})

    def __contains__(self, user_id: object) -> bool:
        return user_id in self._data

    def get(self, user_id: str) -> dict[str, Any]:
        return copy.deepcopy(self._data.get(user_id, {}))

    def as_dict(self) -> dict[str, dict[str, Any]]:
        return copy.deepcopy(self._data)

    def _reject(self, user_id: str, reason: str, **details: Any) -> bool:
        logger.warning("override_rejected", extra={"user_id": user_id, "reason": reason, **details})
        return False

    def _prune(self, user_id: str) -> None:
        record = self._data.get(user_id)
        if record is None:
            return
        for bucket_name in ("per_day", "weekday"):
            buckets = record.get(bucket_name)
            if buckets is None:
                continue
            for key in [key for key, bucket in buckets.items() if not bucket]:
                del buckets[key]
            if not buckets:
                del record[bucket_name]
        if not record or record == {"mode": OverrideMode.GLOBAL.value}:
            del self._data[user_id]

    def set_override_mode(self, user_id: str, mode: OverrideMode | str) -> bool:
        try:
            parsed = OverrideMode(mode)
        except ValueError:
            return self._reject(user_id, "invalid_mode", mode=str(mode))
        self._data.setdefault(user_id, {})["mode"] = parsed.value
        self._prune(user_id)
        return True

    def update_override(self, user_id: str, field_name: str, value: Any) -> bool:
        try:
            parsed = parse_override_value(field_name, value)
        except ValueError as exc:
            return self._reject(user_id, str(exc), field=field_name)
        _assign(self._data.setdefault(user_id, {}), field_name, parsed)
        self._prune(user_id)
        return True

    def update_per_day_override(self, user_id: str, day: date | str, field_name: str, value: Any) -> bool:
        try:
            day_key = normalize_day(day)
            parsed = parse_override_value(field_name, value)
        except ValueError as exc:
            return self._reject(user_id, str(exc), field=field_name, day=str(day))
        record = self._data.setdefault(user_id, {})
        _assign(record.setdefault("per_day", {}).setdefault(day_key, {}), field_name, parsed)
        self._prune(user_id)
        return True

    def set_weekday_override(self, user_id: str, weekday: str, field_name: str, value: Any) -> bool:
        try:
            weekday_key = normalize_weekday(weekday)
            parsed = parse_override_value(field_name, value)
        except ValueError as exc:
            return self._reject(user_id, str(exc), field=field_name, weekday=str(weekday))
        record = self._data.setdefault(user_id, {})
        _assign(record.setdefault("weekday", {}).setdefault(weekday_key, {}), field_name, parsed)
        self._prune(user_id)
        return True

    def _global_values(self, user_id: str) -> dict[str, float]:
        record = self._data.get(user_id, {})
        return {name: record[name] for name in OVERRIDE_FIELDS if record.get(name) is not None}

    def copy_global_to_per_day(self, user_id: str, days: Iterable[date | str]) -> bool:
        try:
            day_keys = [normalize_day(day) for day in days]
        except ValueError as exc:
            return self._reject(user_id, str(exc))
        values = self._global_values(user_id)
        if not values:
            return self._reject(user_id, "no_global_values")
        if not day_keys:
            return self._reject(user_id, "no_days")
        per_day = self._data[user_id].setdefault("per_day", {})
        for day_key in day_keys:
            per_day.setdefault(day_key, {}).update(values)
        return True

    def copy_global_to_weekly(self, user_id: str) -> bool:
        values = self._global_values(user_id)
        if not values:
            return self._reject(user_id, "no_global_values")
        weekday = self._data[user_id].setdefault("weekday", {})
        for weekday_key in WEEKDAY_NAMES:
            weekday.setdefault(weekday_key, {}).update(values)
        return True

    def clear_user(self, user_id: str) -> bool:
        return self._data.pop(user_id, None) is not None

    def user_override(self, user_id: str) -> UserOverride | None:
        record = self._data.get(user_id)
        if record is None:
            return None
        return UserOverride(
            mode=OverrideMode(record.get("mode", OverrideMode.GLOBAL.value)),
            per_day={
                date.fromisoformat(day_key): _day_override(payload)
                for day_key, payload in record.get("per_day", {}).items()
            },
            weekday={
                weekday_key: _day_override(payload)
                for weekday_key, payload in record.get("weekday", {}).items()
            },
            **{name: record.get(name) for name in OVERRIDE_FIELDS},
        )

    def snapshot(self) -> dict[str, UserOverride]:
        return {user_id: self.user_override(user_id) for user_id in self._data}


def load_override_store(db: Session, workspace_id: str) -> OverrideStore:
    records = db.scalars(
        select(OverrideRecord).where(OverrideRecord.workspace_id == workspace_id)
    ).all()
    return OverrideStore({record.user_id: record.payload for record in records})


def save_override_store(
    db: Session,
    workspace_id: str,
    store: OverrideStore,
    *,
    user_ids: Iterable[str] | None = None,
) -> None:
    """Persist the store; ``user_ids`` restricts the write to those users."""
    data = store.as_dict()
    existing = {
        record.user_id: record
        for record in db.scalars(
            select(OverrideRecord).where(OverrideRecord.workspace_id == workspace_id)
        ).all()
    }
    targets = set(user_ids) if user_ids is not None else set(existing) | set(data)

    for user_id in sorted(targets):
        payload = data.get(user_id)
        record = existing.get(user_id)
        if payload is None:
            if record is not None:
                db.delete(record)
            continue
        if record is None:
            db.add(OverrideRecord(workspace_id=workspace_id, user_id=user_id, payload=payload))
        else:
            record.payload = payload

    db.commit()
    logger.info(
        "overrides_saved",
        extra={"workspace_id": workspace_id, "users": len(targets)},
    )
