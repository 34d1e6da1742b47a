"""
Schémas Pydantic pour les présences : recherche, facettes, upsert unitaire,
réconciliation en masse et recherche par plage de dates.
"""

import uuid
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, field_validator

from app.config import settings


# --- Recherche ---

class AttendanceSearch(BaseModel):
    """
    Corps de POST /attendance/search.

    - filters : colonne → valeur exacte, ou from_date + to_date pour une plage
    - facets  : colonnes de regroupement ; si présent (même vide), la réponse est un arbre de facettes
    - sort    : [colonne, asc|desc] en listing, [<statut>_percentage, asc|desc] en facettes
    """
    limit: Optional[int] = None
    offset: Optional[int] = None
    filters: Dict[str, Any] = {}
    facets: Optional[List[str]] = None
    sort: Optional[List[str]] = None

    @field_validator("limit", "offset")
    @classmethod
    def not_negative(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v < 0:
            raise ValueError("La pagination ne peut pas être négative.")
        return v

    @field_validator("sort")
    @classmethod
    def sort_pair(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        if v is not None and len(v) != 2:
            raise ValueError("Le tri attend exactement deux éléments : [colonne, ordre].")
        return v


class AttendanceResponse(BaseModel):
    """Présence telle que renvoyée à l'appelant (champs absents remplacés par leur valeur par défaut)."""
    attendance_id: str
    tenant_id: str
    user_id: str
    context_id: str
    context_type: str
    attendance_date: Optional[date]
    attendance: str
    scope: str
    remark: str
    latitude: float
    longitude: float
    image: str
    meta_data: Any
    session: str
    sync_time: str
    created_by: str
    updated_by: str
    created_at: Optional[datetime]
    updated_at: Optional[datetime]


class AttendanceListResponse(BaseModel):
    """Listing paginé (chemin sans facettes)."""
    attendance_list: List[AttendanceResponse]
    limit: int
    offset: int


FacetCounts = Dict[str, Union[int, str]]


class FacetResponse(BaseModel):
    """Arbre de facettes : champ → valeur → {statut: nombre, <statut>_percentage: "xx.xx"}."""
    result: Dict[str, Dict[str, FacetCounts]]


# --- Écriture unitaire ---

class AttendanceFields(BaseModel):
    """Champs de présence communs à l'upsert unitaire et aux entrées bulk."""
    attendance: Optional[str] = None
    remark: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    image: Optional[str] = None
    meta_data: Optional[Any] = None
    sync_time: Optional[str] = None
    session: Optional[str] = None
    context_type: Optional[str] = None


class AttendanceUpsert(AttendanceFields):
    """Corps de POST /attendance : crée ou met à jour la présence (user_id, attendance_date)."""
    user_id: uuid.UUID
    context_id: uuid.UUID
    attendance_date: date
    scope: Optional[str] = None


class AttendanceUpdate(AttendanceFields):
    """Corps de PATCH /attendance/{id} : seuls les champs non nuls sont appliqués."""
    attendance_date: Optional[date] = None
    scope: Optional[str] = None


# --- Réconciliation en masse ---

class BulkAttendanceItem(AttendanceFields):
    """Une entrée du batch : la présence d'un utilisateur à la date du batch."""
    user_id: uuid.UUID


class BulkAttendanceRequest(BaseModel):
    """Corps de POST /attendance/bulk : une date et un contexte partagés par toutes les entrées."""
    attendance_date: date
    context_id: uuid.UUID
    scope: Optional[str] = None
    user_attendance: List[BulkAttendanceItem]

    @field_validator("user_attendance")
    @classmethod
    def batch_size(cls, v: List[BulkAttendanceItem]) -> List[BulkAttendanceItem]:
        if not v:
            raise ValueError("Le batch doit contenir au moins une présence.")
        if len(v) > settings.MAX_BULK_SIZE:
            raise ValueError(f"Batch trop grand : maximum {settings.MAX_BULK_SIZE} présences par requête.")
        return v


class BulkAttendanceSuccess(BaseModel):
    """Entrée écrite avec succès. outcome : created | updated."""
    index: int
    outcome: str
    attendance: AttendanceResponse


class BulkAttendanceError(BaseModel):
    """Entrée en échec. state : rejected (membre invalide) | failed (erreur d'écriture)."""
    index: int
    user_id: uuid.UUID
    state: str
    reason: str


class BulkAttendanceResponse(BaseModel):
    """Rapport de réconciliation : une entrée en échec n'interrompt jamais les suivantes."""
    total_count: int
    success_count: int
    error_count: int
    responses: List[BulkAttendanceSuccess]
    errors: List[BulkAttendanceError]


# --- Recherche par plage de dates ---

class AttendanceByDateRequest(BaseModel):
    from_date: date
    to_date: date
    filters: Dict[str, Any] = {}
    limit: Optional[int] = None
    offset: Optional[int] = None

    @field_validator("limit", "offset")
    @classmethod
    def not_negative(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v < 0:
            raise ValueError("La pagination ne peut pas être négative.")
        return v


class AttendanceByDateResponse(BaseModel):
    total_count: int
    attendance_list: List[AttendanceResponse]
