"""
Modèle SQLAlchemy pour les présences journalières.

Une ligne par (utilisateur, contexte, date). L'unicité de ce triplet n'est pas
garantie par une contrainte : elle repose sur le find-then-update-or-create
du service de réconciliation (voir attendance_service.upsert_attendance).
"""

import uuid
from sqlalchemy import Column, Date, DateTime, Float, ForeignKey, String, Text, func
from sqlalchemy.dialects.postgresql import JSONB, UUID

from app.database import Base


class Attendance(Base):
    """Présence d'un utilisateur dans un contexte (cohorte) pour une date donnée."""
    __tablename__ = "attendance"

    attendance_id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), nullable=True)

    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    context_id = Column(UUID(as_uuid=True), ForeignKey("cohorts.id", ondelete="CASCADE"), nullable=False)
    context_type = Column(String(50), nullable=True)

    attendance_date = Column(Date, nullable=True)      # NULL = date non renseignée
    attendance = Column(String(50), nullable=True)     # present, absent, ... (texte libre)
    scope = Column(String(50), nullable=True)          # Rôle concerné, "student" par défaut
    remark = Column(Text, nullable=True)

    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    image = Column(String(500), nullable=True)
    meta_data = Column(JSONB, nullable=True)
    session = Column(String(50), nullable=True)
    sync_time = Column(String(50), nullable=True)      # Horodatage client de la synchro

    created_by = Column(UUID(as_uuid=True), nullable=True)
    updated_by = Column(UUID(as_uuid=True), nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
