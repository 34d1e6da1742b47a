"""
Tests unitaires pour la construction des filtres et tris de recherche.
Couverture : clés inconnues, plage from_date/to_date, NULL sur attendance_date,
conversion des valeurs, validation du tri.
"""

import uuid
from datetime import date

import pytest

from app.exceptions import QueryValidationError
from app.models.attendance import Attendance
from app.services.attendance_query import (
    ATTENDANCE_COLUMNS,
    build_conditions,
    build_ordering,
    column_condition,
    coerce_value,
    normalize_direction,
)


def params(clause) -> dict:
    return clause.compile().params


# ============================================================
# Vocabulaire de colonnes
# ============================================================

def test_colonnes_alignees_sur_le_modele():
    """La liste explicite des colonnes reste synchronisée avec la table attendance."""
    assert set(ATTENDANCE_COLUMNS) == set(Attendance.__table__.columns.keys())


# ============================================================
# Filtres exacts
# ============================================================

def test_sans_filtre_seulement_le_tenant():
    tenant_id = uuid.uuid4()
    conditions = build_conditions(tenant_id, {})
    assert len(conditions) == 1
    assert "attendance.tenant_id" in str(conditions[0])


def test_sans_tenant_ni_filtre():
    assert build_conditions(None, None) == []


def test_filtre_exact_colonne_connue():
    user_id = uuid.uuid4()
    conditions = build_conditions(None, {"user_id": str(user_id), "session": "matin"})

    assert len(conditions) == 2
    assert "attendance.user_id =" in str(conditions[0])
    assert list(params(conditions[0]).values()) == [user_id]
    assert list(params(conditions[1]).values()) == ["matin"]


def test_filtre_cle_inconnue_nomme_la_cle():
    with pytest.raises(QueryValidationError) as exc:
        build_conditions(None, {"session": "matin", "classe": "6A"})
    assert exc.value.field == "classe"
    assert "classe" in str(exc.value)


def test_filtre_date_inclut_les_dates_nulles():
    """Un filtre exact sur attendance_date accepte aussi les présences sans date."""
    condition = column_condition("attendance_date", "2024-02-01")
    sql = str(condition)

    assert "attendance.attendance_date =" in sql
    assert "attendance.attendance_date IS NULL" in sql
    assert date(2024, 2, 1) in params(condition).values()


def test_filtre_valeur_uuid_malformee():
    with pytest.raises(QueryValidationError) as exc:
        build_conditions(None, {"user_id": "pas-un-uuid"})
    assert exc.value.field == "user_id"


def test_filtre_date_malformee():
    with pytest.raises(QueryValidationError) as exc:
        build_conditions(None, {"attendance_date": "01/02/2024"})
    assert exc.value.field == "attendance_date"


def test_coerce_value_types():
    uid = uuid.uuid4()
    assert coerce_value("user_id", str(uid)) == uid
    assert coerce_value("user_id", uid) == uid
    assert coerce_value("latitude", "48.85") == 48.85
    assert coerce_value("attendance", "present") == "present"
    assert coerce_value("attendance_date", None) is None


# ============================================================
# Plage from_date / to_date
# ============================================================

def test_plage_de_dates_inclusive():
    conditions = build_conditions(None, {"from_date": "2024-01-01", "to_date": "2024-01-31"})

    assert len(conditions) == 1
    assert "BETWEEN" in str(conditions[0])
    assert set(params(conditions[0]).values()) == {date(2024, 1, 1), date(2024, 1, 31)}


def test_plage_prioritaire_sur_date_exacte():
    """from_date + to_date présents : le filtre exact attendance_date est ignoré."""
    conditions = build_conditions(None, {
        "attendance_date": "2024-03-15",
        "from_date": "2024-01-01",
        "to_date": "2024-01-31",
    })

    sql = " ".join(str(c) for c in conditions)
    assert "BETWEEN" in sql
    assert "IS NULL" not in sql


def test_from_date_seul_est_une_cle_inconnue():
    with pytest.raises(QueryValidationError) as exc:
        build_conditions(None, {"from_date": "2024-01-01"})
    assert exc.value.field == "from_date"


def test_plage_date_malformee():
    with pytest.raises(QueryValidationError) as exc:
        build_conditions(None, {"from_date": "hier", "to_date": "2024-01-31"})
    assert exc.value.field == "from_date"


# ============================================================
# Tri
# ============================================================

def test_tri_absent():
    assert build_ordering(None) == []


def test_tri_insensible_a_la_casse():
    ordering = build_ordering(["attendance_date", "DESC"])
    assert str(ordering[0]) == "attendance.attendance_date DESC"

    ordering = build_ordering(["user_id", "Asc"])
    assert str(ordering[0]) == "attendance.user_id ASC"


def test_tri_colonne_inconnue():
    with pytest.raises(QueryValidationError) as exc:
        build_ordering(["classe", "asc"])
    assert exc.value.field == "classe"


def test_tri_ordre_invalide():
    with pytest.raises(QueryValidationError) as exc:
        normalize_direction("sideways")
    assert exc.value.field == "sort"
