"""
Rapport statistique de présence d'une cohorte.

Agrégation en deux étapes, exécutée côté PostgreSQL :
1. Sous-requête aa_stats : par utilisateur, nombre total de présences et nombre
   de "present" (sur la plage de dates optionnelle)
2. Requête externe : membres "student" de la cohorte ⋈ utilisateurs ⟕ aa_stats,
   pourcentage = ROUND(100 * present / total, 0), NULL si aucune présence

Le NULL est exposé sous la forme "-" et exclu de la moyenne de cohorte.
La moyenne est calculée sur toute la cohorte filtrée, jamais sur la seule page.
"""

import logging
import uuid
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import Numeric, case, cast, func, null, select
from sqlalchemy.orm import Session
from sqlalchemy.sql import Select

from app.config import settings
from app.models.attendance import Attendance
from app.models.cohort import CohortMember
from app.models.user import User
from app.schemas.report import (
    AttendanceReportRequest,
    AttendanceReportResponse,
    ReportAverage,
    ReportFilters,
    ReportRow,
)

logger = logging.getLogger(__name__)

NO_DATA_SENTINEL = "-"


def _member_stats_query(cohort_id: uuid.UUID, filters: Optional[ReportFilters]) -> Select:
    """Requête (non paginée, non triée) : une ligne par membre avec son pourcentage."""
    stats = select(
        Attendance.user_id.label("user_id"),
        func.count().label("total_attendance"),
        func.count(case((Attendance.attendance == settings.PRESENT_STATUS, 1))).label("present_count"),
    )
    if filters and filters.from_date and filters.to_date:
        stats = stats.where(Attendance.attendance_date.between(filters.from_date, filters.to_date))
    stats = stats.group_by(Attendance.user_id).subquery("aa_stats")

    total = func.coalesce(stats.c.total_attendance, 0)
    percentage = case(
        (total == 0, null()),
        else_=func.round(cast(stats.c.present_count, Numeric) * 100 / total, 0),
    ).label("attendance_percentage")

    query = (
        select(User.id.label("user_id"), User.name.label("name"), percentage)
        .join(CohortMember, CohortMember.user_id == User.id)
        .outerjoin(stats, stats.c.user_id == CohortMember.user_id)
        .where(
            CohortMember.cohort_id == cohort_id,
            CohortMember.role == settings.REPORT_MEMBER_ROLE,
        )
    )

    if filters and filters.search:
        query = query.where(User.name.ilike(f"%{filters.search}%"))
    if filters and filters.user_id:
        query = query.where(User.id == filters.user_id)

    # Dédoublonne un membre inscrit plusieurs fois dans la même cohorte
    return query.group_by(User.id, User.name, stats.c.total_attendance, stats.c.present_count)


def _apply_order(query: Select, filters: Optional[ReportFilters]) -> Select:
    """Tri par nom prioritaire sur le tri par pourcentage ; les "-" toujours en dernier."""
    if filters is None:
        return query
    if filters.name_order:
        column = User.name
        return query.order_by(column.asc() if filters.name_order == "asc" else column.desc())
    if filters.percentage_order:
        column = query.selected_columns.attendance_percentage
        ordered = column.asc() if filters.percentage_order == "asc" else column.desc()
        return query.order_by(ordered.nulls_last())
    return query


def format_report_percentage(value: Any) -> str:
    if value is None:
        return NO_DATA_SENTINEL
    return str(int(value))


def format_average(value: Any) -> Optional[float]:
    if value is None:
        return None
    return float(Decimal(str(value)).quantize(Decimal("0.01")))


def get_attendance_report(db: Session, data: AttendanceReportRequest) -> AttendanceReportResponse:
    """
    Calcule le rapport paginé d'une cohorte et, sauf si un seul user_id est ciblé,
    la moyenne de présence de toute la cohorte filtrée.
    """
    filters = data.filters
    base_query = _member_stats_query(data.context_id, filters)

    page_query = _apply_order(base_query, filters).limit(data.limit).offset(data.offset)
    rows = db.execute(page_query).all()

    report = [
        ReportRow(
            user_id=row.user_id,
            name=row.name or "",
            attendance_percentage=format_report_percentage(row.attendance_percentage),
        )
        for row in rows
    ]

    if filters is not None and filters.user_id is not None:
        logger.info("Rapport de présence, cohorte %s, membre %s", data.context_id, filters.user_id)
        return AttendanceReportResponse(report=report)

    members = base_query.subquery("members")
    average = db.execute(
        select(func.round(func.avg(members.c.attendance_percentage), 2))
    ).scalar()

    logger.info(
        "Rapport de présence, cohorte %s : %d lignes, moyenne %s",
        data.context_id, len(report), average,
    )

    return AttendanceReportResponse(
        report=report,
        average=ReportAverage(average_attendance_percentage=format_average(average)),
    )
