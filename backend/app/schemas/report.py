"""
Schémas Pydantic pour le rapport statistique de présence d'une cohorte.
Endpoint : POST /api/v1/attendance/report
"""

import uuid
from datetime import date
from typing import List, Optional

from pydantic import BaseModel, field_validator, model_validator

VALID_ORDERS = {"asc", "desc"}


class ReportFilters(BaseModel):
    search: Optional[str] = None          # Filtre ILIKE sur le nom
    user_id: Optional[uuid.UUID] = None   # Rapport d'un seul membre (pas de moyenne)
    from_date: Optional[date] = None
    to_date: Optional[date] = None
    name_order: Optional[str] = None      # Prioritaire sur percentage_order
    percentage_order: Optional[str] = None

    @field_validator("name_order", "percentage_order")
    @classmethod
    def valid_order(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.strip().lower()
        if v not in VALID_ORDERS:
            raise ValueError(f"Ordre invalide. Valeurs acceptées : {VALID_ORDERS}")
        return v

    @field_validator("search")
    @classmethod
    def strip_search(cls, v: Optional[str]) -> Optional[str]:
        return v.strip() if v and v.strip() else None

    @model_validator(mode="after")
    def date_range_complete(self) -> "ReportFilters":
        if (self.from_date is None) != (self.to_date is None):
            raise ValueError("from_date et to_date doivent être fournis ensemble.")
        return self


class AttendanceReportRequest(BaseModel):
    context_id: uuid.UUID
    limit: int = 20
    offset: int = 0
    filters: Optional[ReportFilters] = None

    @field_validator("limit", "offset")
    @classmethod
    def not_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("La pagination ne peut pas être négative.")
        return v


class ReportRow(BaseModel):
    """attendance_percentage : pourcentage entier en texte, ou "-" si aucune présence."""
    user_id: uuid.UUID
    name: str
    attendance_percentage: str


class ReportAverage(BaseModel):
    """Moyenne de la cohorte ; None si aucun membre n'a de pourcentage défini."""
    average_attendance_percentage: Optional[float]


class AttendanceReportResponse(BaseModel):
    report: List[ReportRow]
    average: Optional[ReportAverage] = None  # Omise quand un seul user_id est ciblé
