"""
Service métier des présences : recherche, upsert unitaire et réconciliation en masse.

Réconciliation d'un batch (une date, un contexte). Pour chaque entrée, dans l'ordre :
1. Vérifie que (user_id, context_id) est un membre de cohorte → sinon "rejected"
2. Cherche une présence existante pour (user_id, date) via les filtres de recherche
3. Trouvée → fusion des champs non nuls ("updated") ; sinon création ("created")
4. Erreur d'écriture → rollback de cette seule entrée ("failed")

Chaque entrée est commitée séparément : un batch peut être partiellement écrit,
et le rapport retourné le dit entrée par entrée.
"""

import logging
import uuid
from datetime import date
from typing import Any, Dict, List, Optional, Tuple, Union

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import settings
from app.exceptions import AttendanceError, InvalidMembershipError, ReferentialError, StorageError
from app.models.attendance import Attendance
from app.models.cohort import CohortMember
from app.schemas.attendance import (
    AttendanceByDateRequest,
    AttendanceByDateResponse,
    AttendanceListResponse,
    AttendanceResponse,
    AttendanceSearch,
    AttendanceUpdate,
    AttendanceUpsert,
    BulkAttendanceError,
    BulkAttendanceRequest,
    BulkAttendanceResponse,
    BulkAttendanceSuccess,
    FacetResponse,
)
from app.services import attendance_query, facet_service

logger = logging.getLogger(__name__)

# Valeur renvoyée pour chaque champ non renseigné
ATTENDANCE_FIELD_DEFAULTS: Dict[str, Any] = {
    "attendance_id": "",
    "tenant_id": "",
    "user_id": "",
    "context_id": "",
    "context_type": "",
    "attendance_date": None,
    "attendance": "",
    "scope": "",
    "remark": "",
    "latitude": 0,
    "longitude": 0,
    "image": "",
    "meta_data": [],
    "session": "",
    "sync_time": "",
    "created_by": "",
    "updated_by": "",
    "created_at": None,
    "updated_at": None,
}


def to_response(record: Attendance) -> AttendanceResponse:
    """Mappe une présence vers le schéma de réponse en appliquant ATTENDANCE_FIELD_DEFAULTS."""
    values: Dict[str, Any] = {}
    for field, default in ATTENDANCE_FIELD_DEFAULTS.items():
        value = getattr(record, field, None)
        if value is None or value == "":
            value = default
        elif isinstance(value, uuid.UUID):
            value = str(value)
        values[field] = value
    return AttendanceResponse(**values)


# --- Recherche ---

def search_attendance(
    db: Session,
    tenant_id: Optional[uuid.UUID],
    search: AttendanceSearch,
) -> Union[AttendanceListResponse, FacetResponse]:
    """
    Recherche filtrée des présences.

    Sans facettes : listing trié et paginé (limit 20 / offset 0 par défaut).
    Avec facettes (même une liste vide) : arbre de comptage sur l'ensemble filtré, sans pagination ;
    `sort` porte alors sur un pourcentage de statut.
    """
    conditions = attendance_query.build_conditions(tenant_id, search.filters)

    if search.facets is not None:
        records = db.execute(select(Attendance).where(*conditions)).scalars().all()
        tree = facet_service.faceted_search(records, search.facets, search.sort)
        return FacetResponse(result=tree)

    limit = search.limit or settings.DEFAULT_PAGE_LIMIT
    offset = search.offset or settings.DEFAULT_PAGE_OFFSET
    ordering = attendance_query.build_ordering(search.sort)

    records = db.execute(
        select(Attendance)
        .where(*conditions)
        .order_by(*ordering)
        .offset(offset)
        .limit(limit)
    ).scalars().all()

    return AttendanceListResponse(
        attendance_list=[to_response(r) for r in records],
        limit=limit,
        offset=offset,
    )


def attendance_by_date(
    db: Session,
    tenant_id: Optional[uuid.UUID],
    data: AttendanceByDateRequest,
) -> AttendanceByDateResponse:
    """Présences d'une plage de dates inclusive, avec filtres exacts optionnels et total."""
    conditions = [Attendance.attendance_date.between(data.from_date, data.to_date)]
    if tenant_id is not None:
        conditions.append(Attendance.tenant_id == tenant_id)
    for key, value in data.filters.items():
        conditions.append(attendance_query.column_condition(key, value))

    total_count = db.execute(
        select(func.count()).select_from(Attendance).where(*conditions)
    ).scalar() or 0

    query = select(Attendance).where(*conditions).offset(data.offset or 0)
    if data.limit:
        query = query.limit(data.limit)
    records = db.execute(query).scalars().all()

    return AttendanceByDateResponse(
        total_count=total_count,
        attendance_list=[to_response(r) for r in records],
    )


# --- Écriture unitaire ---

def validate_user_for_cohort(db: Session, user_id: uuid.UUID, cohort_id: uuid.UUID) -> bool:
    """True si l'utilisateur est membre de la cohorte (tous rôles confondus)."""
    member = db.execute(
        select(CohortMember.id)
        .where(CohortMember.user_id == user_id, CohortMember.cohort_id == cohort_id)
        .limit(1)
    ).scalar()
    return member is not None


def find_attendance(
    db: Session,
    tenant_id: Optional[uuid.UUID],
    user_id: uuid.UUID,
    attendance_date: date,
) -> Optional[Attendance]:
    """
    Présence existante pour (user_id, date), via les mêmes filtres que la recherche :
    une présence sans date de cet utilisateur est donc aussi considérée comme existante.
    """
    conditions = attendance_query.build_conditions(
        tenant_id, {"attendance_date": attendance_date, "user_id": user_id}
    )
    # Une présence datée passe avant une présence sans date
    query = (
        select(Attendance)
        .where(*conditions)
        .order_by(Attendance.attendance_date.is_(None))
        .limit(1)
    )
    return db.execute(query).scalars().first()


def _commit(db: Session, action: str) -> None:
    """Commit avec traduction des erreurs SQLAlchemy en erreurs métier (rollback inclus)."""
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        logger.warning("Contrainte violée lors de %s : %s", action, exc.orig)
        raise ReferentialError("Please provide valid user_id and context_id")
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("Erreur base de données lors de %s : %s", action, exc)
        raise StorageError(f"Erreur base de données lors de {action}")


def create_attendance(
    db: Session,
    tenant_id: Optional[uuid.UUID],
    data: AttendanceUpsert,
    login_user_id: Optional[uuid.UUID] = None,
) -> Attendance:
    """Crée une présence ; scope vaut "student" s'il n'est pas fourni."""
    values = data.model_dump()
    if not values.get("scope"):
        values["scope"] = settings.DEFAULT_SCOPE
    attendance = Attendance(
        tenant_id=tenant_id,
        created_by=login_user_id,
        updated_by=login_user_id,
        **values,
    )
    db.add(attendance)
    _commit(db, "la création de la présence")
    db.refresh(attendance)
    return attendance


def update_attendance(
    db: Session,
    attendance_id: uuid.UUID,
    data: Union[AttendanceUpdate, AttendanceUpsert],
    login_user_id: Optional[uuid.UUID] = None,
) -> Attendance:
    """Fusionne les champs non nuls dans une présence existante."""
    attendance = db.get(Attendance, attendance_id)
    if attendance is None:
        raise ReferentialError("Attendance record not found", field="attendance_id")

    for field, value in data.model_dump(exclude_none=True).items():
        setattr(attendance, field, value)
    if login_user_id is not None:
        attendance.updated_by = login_user_id

    _commit(db, "la mise à jour de la présence")
    db.refresh(attendance)
    return attendance


def upsert_attendance(
    db: Session,
    tenant_id: Optional[uuid.UUID],
    data: AttendanceUpsert,
    login_user_id: Optional[uuid.UUID] = None,
) -> Tuple[Attendance, bool]:
    """
    Crée ou met à jour la présence (user_id, attendance_date).
    Retourne (présence, created). Lève InvalidMembershipError si l'utilisateur n'est pas
    membre de la cohorte context_id.
    """
    if not validate_user_for_cohort(db, data.user_id, data.context_id):
        raise InvalidMembershipError("Invalid combination of context_id and user_id", field="user_id")

    existing = find_attendance(db, tenant_id, data.user_id, data.attendance_date)
    if existing is not None:
        return update_attendance(db, existing.attendance_id, data, login_user_id), False
    return create_attendance(db, tenant_id, data, login_user_id), True


# --- Réconciliation en masse ---

def bulk_upsert_attendance(
    db: Session,
    tenant_id: Optional[uuid.UUID],
    data: BulkAttendanceRequest,
    login_user_id: Optional[uuid.UUID] = None,
) -> BulkAttendanceResponse:
    """
    Réconcilie un batch de présences pour une date et un contexte.
    Ne lève jamais pour une entrée : chaque échec est isolé et rapporté.
    """
    responses: List[BulkAttendanceSuccess] = []
    errors: List[BulkAttendanceError] = []

    for index, item in enumerate(data.user_attendance):
        entry = AttendanceUpsert(
            attendance_date=data.attendance_date,
            context_id=data.context_id,
            scope=data.scope,
            **item.model_dump(),
        )

        try:
            attendance, created = upsert_attendance(db, tenant_id, entry, login_user_id)
        except InvalidMembershipError as exc:
            errors.append(BulkAttendanceError(index=index, user_id=item.user_id, state="rejected", reason=str(exc)))
            logger.debug("Entrée %d rejetée (%s) : %s", index, item.user_id, exc)
            continue
        except AttendanceError as exc:
            errors.append(BulkAttendanceError(index=index, user_id=item.user_id, state="failed", reason=str(exc)))
            logger.debug("Entrée %d en échec (%s) : %s", index, item.user_id, exc)
            continue
        except SQLAlchemyError as exc:
            # Lecture en échec (membre ou présence existante) : seule cette entrée est perdue
            db.rollback()
            logger.error("Entrée %d (%s) : erreur base de données : %s", index, item.user_id, exc)
            errors.append(BulkAttendanceError(
                index=index, user_id=item.user_id, state="failed", reason="Erreur base de données",
            ))
            continue

        responses.append(BulkAttendanceSuccess(
            index=index,
            outcome="created" if created else "updated",
            attendance=to_response(attendance),
        ))

    logger.info(
        "Bulk présences contexte=%s date=%s : %d reçues, %d écrites, %d erreurs",
        data.context_id, data.attendance_date, len(data.user_attendance), len(responses), len(errors),
    )

    return BulkAttendanceResponse(
        total_count=len(data.user_attendance),
        success_count=len(responses),
        error_count=len(errors),
        responses=responses,
        errors=errors,
    )
