from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Iterable, List, Union

import structlog

from lesson_engine.domain.schemas.curriculum import ContentUnit

logger = structlog.get_logger(__name__)


def _first(row: dict[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        value = row.get(key)
        if value not in (None, ""):
            return value
    return default


def _activity_text(activity: Any) -> str:
    if isinstance(activity, str):
        return activity.strip()
    if isinstance(activity, dict):
        title = str(_first(activity, "title", "titulo", default="")).strip()
        description = str(_first(activity, "description", "descripcion", default="")).strip()
        if title and description:
            return f"{title}: {description}"
        return title or description
    return str(activity or "").strip()


def units_from_payload(payload: Union[dict[str, Any], List[Any]]) -> List[ContentUnit]:
    """
    Flattens a weeks -> days -> activities export into ContentUnits.

    Accepts English keys (`weeks`, `days`, `activities`) and the Spanish
    export keys (`semanas`, `esquema_diario`, `pomodoros`).
    """
    weeks: Iterable[Any]
    if isinstance(payload, list):
        weeks = payload
    else:
        weeks = _first(payload, "weeks", "semanas", default=[]) or []

    units: List[ContentUnit] = []
    for position, week in enumerate(weeks, start=1):
        if not isinstance(week, dict):
            continue
        week_id = int(_first(week, "week", "week_id", "semana", default=position))
        week_title = str(_first(week, "title", "week_title", "titulo_semana", "titulo", default=""))
        topic = str(_first(week, "topic", "tematica", default=""))
        days = _first(week, "days", "esquema_diario", default=[]) or []
        for day_position, day in enumerate(days, start=1):
            if not isinstance(day, dict):
                continue
            day_index = int(_first(day, "day", "day_index", "dia", default=day_position))
            concept = str(_first(day, "concept", "day_concept", "concepto", default=""))
            activities = _first(day, "activities", "pomodoros", "actividades", default=[]) or []
            for activity_index, activity in enumerate(activities):
                text = _activity_text(activity)
                if not text:
                    logger.warning(
                        "curriculum_activity_empty",
                        week_id=week_id,
                        day_index=day_index,
                        activity_index=activity_index,
                    )
                    continue
                units.append(
                    ContentUnit(
                        week_id=week_id,
                        day_index=day_index,
                        activity_index=activity_index,
                        text=text,
                        week_title=week_title,
                        topic=topic,
                        day_concept=concept,
                    )
                )
    return units


def load_curriculum_file(path: Union[str, Path]) -> List[ContentUnit]:
    source = Path(path)
    with source.open("r", encoding="utf-8") as handle:
        payload = json.load(handle)
    units = units_from_payload(payload)
    logger.info("curriculum_loaded", path=str(source), units=len(units))
    return units
