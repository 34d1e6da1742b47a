"""
Router pour les présences.
- Recherche filtrée / facettes (POST /api/v1/attendance/search)
- Upsert unitaire (POST /api/v1/attendance)
- Mise à jour par identifiant (PATCH /api/v1/attendance/{id})
- Réconciliation en masse (POST /api/v1/attendance/bulk)
- Recherche par plage de dates (POST /api/v1/attendance/by-date)
- Rapport de cohorte (POST /api/v1/attendance/report)

L'en-tête `tenantid` délimite le tenant ; `x-user-id` identifie l'auteur des écritures
(authentifié en amont par le fournisseur d'identité).
"""

import uuid
from typing import Optional, Union

from fastapi import APIRouter, Depends, Header, HTTPException, Response
from sqlalchemy.orm import Session

from app.database import get_db
from app.exceptions import AttendanceError, StorageError
from app.schemas.attendance import (
    AttendanceByDateRequest,
    AttendanceByDateResponse,
    AttendanceListResponse,
    AttendanceResponse,
    AttendanceSearch,
    AttendanceUpdate,
    AttendanceUpsert,
    BulkAttendanceRequest,
    BulkAttendanceResponse,
    FacetResponse,
)
from app.schemas.report import AttendanceReportRequest, AttendanceReportResponse
from app.services import attendance_service, report_service

router = APIRouter(prefix="/api/v1/attendance", tags=["Présences"])


def _http_error(exc: AttendanceError) -> HTTPException:
    """Traduit une erreur métier en réponse HTTP : 500 pour le stockage, 400 sinon."""
    if isinstance(exc, StorageError):
        return HTTPException(status_code=500, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))


@router.post(
    "/search",
    response_model=Union[AttendanceListResponse, FacetResponse],
    summary="Rechercher des présences (listing ou facettes)",
)
def search_attendance(
    data: AttendanceSearch,
    tenant_id: uuid.UUID = Header(..., alias="tenantid"),
    db: Session = Depends(get_db),
):
    """
    Sans `facets` : listing filtré, trié et paginé.
    Avec `facets` : comptage par valeur de champ et pourcentages par statut.
    Clé de filtre, de tri ou de facette inconnue → 400.
    """
    try:
        return attendance_service.search_attendance(db, tenant_id, data)
    except AttendanceError as e:
        raise _http_error(e)


@router.post("", response_model=AttendanceResponse, summary="Créer ou mettre à jour une présence")
def upsert_attendance(
    data: AttendanceUpsert,
    response: Response,
    tenant_id: uuid.UUID = Header(..., alias="tenantid"),
    user_id: Optional[uuid.UUID] = Header(None, alias="x-user-id"),
    db: Session = Depends(get_db),
):
    """Met à jour la présence (user_id, attendance_date) si elle existe (200), sinon la crée (201)."""
    try:
        attendance, created = attendance_service.upsert_attendance(db, tenant_id, data, user_id)
    except AttendanceError as e:
        raise _http_error(e)
    response.status_code = 201 if created else 200
    return attendance_service.to_response(attendance)


@router.patch("/{attendance_id}", response_model=AttendanceResponse, summary="Modifier une présence")
def update_attendance(
    attendance_id: uuid.UUID,
    data: AttendanceUpdate,
    user_id: Optional[uuid.UUID] = Header(None, alias="x-user-id"),
    db: Session = Depends(get_db),
):
    """Applique les champs non nuls à une présence existante."""
    try:
        attendance = attendance_service.update_attendance(db, attendance_id, data, user_id)
    except AttendanceError as e:
        raise _http_error(e)
    return attendance_service.to_response(attendance)


@router.post("/bulk", response_model=BulkAttendanceResponse, summary="Réconcilier un batch de présences")
def bulk_attendance(
    data: BulkAttendanceRequest,
    tenant_id: uuid.UUID = Header(..., alias="tenantid"),
    user_id: Optional[uuid.UUID] = Header(None, alias="x-user-id"),
    db: Session = Depends(get_db),
):
    """
    Crée ou met à jour une présence par entrée pour la date du batch.
    Toujours 200 : les entrées en échec sont détaillées dans `errors`.
    """
    return attendance_service.bulk_upsert_attendance(db, tenant_id, data, user_id)


@router.post("/by-date", response_model=AttendanceByDateResponse, summary="Présences sur une plage de dates")
def attendance_by_date(
    data: AttendanceByDateRequest,
    tenant_id: uuid.UUID = Header(..., alias="tenantid"),
    db: Session = Depends(get_db),
):
    try:
        return attendance_service.attendance_by_date(db, tenant_id, data)
    except AttendanceError as e:
        raise _http_error(e)


@router.post("/report", response_model=AttendanceReportResponse, summary="Rapport de présence d'une cohorte")
def attendance_report(data: AttendanceReportRequest, db: Session = Depends(get_db)):
    """
    Pourcentage de présence de chaque membre "student" de la cohorte ("-" sans donnée)
    et moyenne de la cohorte (omise quand un seul user_id est demandé).
    """
    return report_service.get_attendance_report(db, data)
