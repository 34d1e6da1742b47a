"""
Construction des prédicats et tris de recherche sur la table attendance.

Le vocabulaire de filtre est fermé : seules les colonnes de ATTENDANCE_COLUMNS
sont acceptées (plus la paire from_date / to_date pour une plage de dates).
Toute autre clé lève une QueryValidationError qui nomme la clé fautive.

Particularité conservée : un filtre exact sur attendance_date accepte aussi les
présences sans date (attendance_date IS NULL).
"""

import uuid
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Mapping, Optional

from sqlalchemy import or_
from sqlalchemy.sql.elements import ColumnElement

from app.exceptions import QueryValidationError
from app.models.attendance import Attendance

ATTENDANCE_COLUMNS = (
    "attendance_id",
    "tenant_id",
    "user_id",
    "context_id",
    "context_type",
    "attendance_date",
    "attendance",
    "scope",
    "remark",
    "latitude",
    "longitude",
    "image",
    "meta_data",
    "session",
    "sync_time",
    "created_by",
    "updated_by",
    "created_at",
    "updated_at",
)

FROM_DATE_KEY = "from_date"
TO_DATE_KEY = "to_date"
DATE_COLUMN = "attendance_date"

SORT_DIRECTIONS = {"asc": "asc", "ascending": "asc", "desc": "desc", "descending": "desc"}


def _parse_uuid(value: Any) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    return uuid.UUID(str(value))


def _parse_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value))


def _parse_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


# Colonne → conversion de la valeur reçue en JSON. Colonnes absentes : valeur inchangée.
COLUMN_PARSERS: Dict[str, Callable[[Any], Any]] = {
    "attendance_id": _parse_uuid,
    "tenant_id": _parse_uuid,
    "user_id": _parse_uuid,
    "context_id": _parse_uuid,
    "created_by": _parse_uuid,
    "updated_by": _parse_uuid,
    "attendance_date": _parse_date,
    "latitude": float,
    "longitude": float,
    "created_at": _parse_datetime,
    "updated_at": _parse_datetime,
}


def coerce_value(column: str, value: Any) -> Any:
    """Convertit une valeur de filtre vers le type de la colonne, ou lève QueryValidationError."""
    parser = COLUMN_PARSERS.get(column)
    if parser is None or value is None:
        return value
    try:
        return parser(value)
    except (TypeError, ValueError):
        raise QueryValidationError(f"Valeur invalide pour {column} : {value!r}", field=column)


def is_known_column(name: str) -> bool:
    return name in ATTENDANCE_COLUMNS


def column_condition(column: str, value: Any) -> ColumnElement:
    """Prédicat d'égalité exacte sur une colonne connue."""
    if not is_known_column(column):
        raise QueryValidationError(f"{column} Invalid filter key", field=column)
    attribute = getattr(Attendance, column)
    value = coerce_value(column, value)
    if column == DATE_COLUMN:
        # Les présences sans date sont compatibles avec n'importe quel filtre de date
        return or_(attribute == value, attribute.is_(None))
    if value is None:
        return attribute.is_(None)
    return attribute == value


def date_range_condition(from_date: Any, to_date: Any) -> ColumnElement:
    """Plage inclusive sur attendance_date."""
    try:
        start = _parse_date(from_date)
    except (TypeError, ValueError):
        raise QueryValidationError(f"Valeur invalide pour from_date : {from_date!r}", field=FROM_DATE_KEY)
    try:
        end = _parse_date(to_date)
    except (TypeError, ValueError):
        raise QueryValidationError(f"Valeur invalide pour to_date : {to_date!r}", field=TO_DATE_KEY)
    return Attendance.attendance_date.between(start, end)


def build_conditions(tenant_id: Optional[uuid.UUID], filters: Optional[Mapping[str, Any]]) -> List[ColumnElement]:
    """
    Traduit un mapping de filtres en liste de prédicats (combinés en AND).

    - Clé connue → égalité exacte (attendance_date : égalité OU NULL)
    - from_date + to_date tous deux présents → plage inclusive, prioritaire sur
      un filtre exact attendance_date
    - Toute autre clé (y compris from_date seul) → QueryValidationError
    """
    conditions: List[ColumnElement] = []
    if tenant_id is not None:
        conditions.append(Attendance.tenant_id == tenant_id)

    if not filters:
        return conditions

    has_range = filters.get(FROM_DATE_KEY) is not None and filters.get(TO_DATE_KEY) is not None

    for key, value in filters.items():
        if is_known_column(key):
            if key == DATE_COLUMN and has_range:
                continue
            conditions.append(column_condition(key, value))
        elif has_range and key in (FROM_DATE_KEY, TO_DATE_KEY):
            continue
        else:
            raise QueryValidationError(f"{key} Invalid filter key", field=key)

    if has_range:
        conditions.append(date_range_condition(filters[FROM_DATE_KEY], filters[TO_DATE_KEY]))

    return conditions


def normalize_direction(direction: Any) -> str:
    """Ordre de tri insensible à la casse → "asc" ou "desc"."""
    normalized = SORT_DIRECTIONS.get(str(direction).strip().lower())
    if normalized is None:
        raise QueryValidationError(f"{direction} Invalid sort order", field="sort")
    return normalized


def build_ordering(sort: Optional[List[str]]) -> List[ColumnElement]:
    """Traduit une paire [colonne, ordre] en clause ORDER BY. Aucun tri si sort est vide."""
    if not sort:
        return []
    column, direction = sort
    if not is_known_column(column):
        raise QueryValidationError(f"{column} Invalid sort key", field=column)
    attribute = getattr(Attendance, column)
    if normalize_direction(direction) == "asc":
        return [attribute.asc()]
    return [attribute.desc()]
