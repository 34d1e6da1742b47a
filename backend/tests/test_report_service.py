"""
Tests unitaires pour le rapport statistique de cohorte.
Couverture : sentinelle "-", moyenne (présente, vide, omise), structure SQL
(rôle, plage de dates, recherche, tri).
"""

import uuid
from datetime import date
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from pydantic import ValidationError
from sqlalchemy.dialects import postgresql

from app.schemas.report import AttendanceReportRequest, ReportFilters
from app.services.report_service import (
    format_average,
    format_report_percentage,
    get_attendance_report,
)

COHORT_ID = uuid.uuid4()


# --- Helpers ---

def make_row(name="Alice Martin", percentage=None, user_id=None):
    return SimpleNamespace(user_id=user_id or uuid.uuid4(), name=name, attendance_percentage=percentage)


def make_db(rows, average=None):
    """Premier execute → lignes de la page, second execute → moyenne (.scalar())."""
    db = MagicMock()
    page_result = MagicMock()
    page_result.all.return_value = rows
    average_result = MagicMock()
    average_result.scalar.return_value = average
    db.execute.side_effect = [page_result, average_result]
    return db


def compiled_sql(db, call_index=0) -> str:
    statement = db.execute.call_args_list[call_index][0][0]
    return str(statement.compile(dialect=postgresql.dialect()))


def compiled_params(db, call_index=0) -> dict:
    statement = db.execute.call_args_list[call_index][0][0]
    return statement.compile(dialect=postgresql.dialect()).params


def make_request(**filters) -> AttendanceReportRequest:
    return AttendanceReportRequest(
        context_id=COHORT_ID,
        limit=20,
        offset=0,
        filters=ReportFilters(**filters) if filters else None,
    )


# ============================================================
# Pourcentages et sentinelle
# ============================================================

def test_rapport_pourcentages_et_moyenne():
    rows = [make_row("Alice", Decimal("67")), make_row("Bruno", Decimal("100")), make_row("Chloé", None)]
    db = make_db(rows, average=Decimal("83.50"))

    result = get_attendance_report(db, make_request())

    assert [r.attendance_percentage for r in result.report] == ["67", "100", "-"]
    assert result.average.average_attendance_percentage == 83.5
    assert db.execute.call_count == 2


def test_rapport_aucune_presence():
    """Aucun membre n'a de présence → tous "-" et moyenne nulle."""
    rows = [make_row("Alice"), make_row("Bruno")]
    db = make_db(rows, average=None)

    result = get_attendance_report(db, make_request())

    assert all(r.attendance_percentage == "-" for r in result.report)
    assert result.average is not None
    assert result.average.average_attendance_percentage is None


def test_rapport_un_seul_membre_sans_moyenne():
    user_id = uuid.uuid4()
    db = make_db([make_row("Alice", Decimal("50"), user_id=user_id)])

    result = get_attendance_report(db, make_request(user_id=user_id))

    assert result.average is None
    assert len(result.report) == 1
    assert db.execute.call_count == 1
    assert "users.id =" in compiled_sql(db)


def test_rapport_nom_absent():
    db = make_db([make_row(name=None, percentage=Decimal("10"))])
    result = get_attendance_report(db, make_request())
    assert result.report[0].name == ""


# ============================================================
# Structure des requêtes
# ============================================================

def test_requete_membres_student_de_la_cohorte():
    db = make_db([])
    get_attendance_report(db, make_request())

    sql = compiled_sql(db)
    assert "cohort_members.cohort_id =" in sql
    assert "cohort_members.role =" in sql
    assert "LEFT OUTER JOIN" in sql
    assert "GROUP BY attendance.user_id" in sql
    assert "LIMIT" in sql


def test_moyenne_calculee_sur_toute_la_cohorte():
    db = make_db([])
    get_attendance_report(db, make_request())

    sql = compiled_sql(db, call_index=1)
    assert "avg(" in sql.lower()
    assert "LIMIT" not in sql


def test_pourcentage_nul_sans_presence_et_arrondi_entier():
    """Aucune présence → NULL (exposé "-") ; sinon ROUND(present * 100 / total, 0)."""
    db = make_db([])
    get_attendance_report(db, make_request())

    sql = compiled_sql(db)
    assert "count(CASE WHEN (attendance.attendance =" in sql
    assert "THEN NULL ELSE round(CAST(aa_stats.present_count AS NUMERIC)" in sql
    assert "coalesce(aa_stats.total_attendance" in sql
    params = compiled_params(db)
    assert "present" in params.values()
    assert 100 in params.values()


def test_moyenne_arrondie_sur_les_pourcentages_non_nuls():
    """AVG ignore les NULL : les membres "-" sont exclus de la moyenne, arrondie à 2 décimales."""
    db = make_db([])
    get_attendance_report(db, make_request())

    sql = compiled_sql(db, call_index=1)
    assert "round(avg(members.attendance_percentage)" in sql
    assert "THEN NULL" in sql
    assert 2 in compiled_params(db, call_index=1).values()


def test_requete_plage_de_dates_et_recherche():
    db = make_db([])
    get_attendance_report(db, make_request(
        search="  mar ", from_date=date(2024, 1, 1), to_date=date(2024, 1, 31),
    ))

    sql = compiled_sql(db)
    assert "attendance.attendance_date BETWEEN" in sql
    assert "ILIKE" in sql


def test_tri_par_nom_prioritaire():
    db = make_db([])
    get_attendance_report(db, make_request(name_order="DESC", percentage_order="asc"))

    order_by = compiled_sql(db).split("ORDER BY")[1]
    assert "users.name DESC" in order_by
    assert "NULLS LAST" not in order_by


def test_tri_par_pourcentage_sentinelles_en_dernier():
    db = make_db([])
    get_attendance_report(db, make_request(percentage_order="asc"))

    order_by = compiled_sql(db).split("ORDER BY")[1]
    assert "attendance_percentage ASC NULLS LAST" in order_by


# ============================================================
# Validation et formatage
# ============================================================

def test_ordre_invalide_rejete():
    with pytest.raises(ValidationError):
        ReportFilters(name_order="alphabetique")


def test_plage_incomplete_rejetee():
    with pytest.raises(ValidationError):
        ReportFilters(from_date=date(2024, 1, 1))


def test_format_report_percentage():
    assert format_report_percentage(None) == "-"
    assert format_report_percentage(Decimal("67")) == "67"
    assert format_report_percentage(0) == "0"


def test_format_average():
    assert format_average(None) is None
    assert format_average(Decimal("66.666")) == 66.67
