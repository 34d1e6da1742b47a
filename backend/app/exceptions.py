"""
Exceptions métier levées par les services de présences.

Les services lèvent, les routers traduisent en HTTPException :
- QueryValidationError → 400 (clé de filtre, tri ou facette inconnue, valeur mal formée)
- ReferentialError     → 400 (clé étrangère invalide, membre de cohorte inconnu)
- StorageError         → 500 (échec d'écriture en base, pas de retry ici)
"""

from typing import Optional


class AttendanceError(Exception):
    """Racine des erreurs métier. `field` nomme le champ fautif quand il existe."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.field = field

    def __str__(self) -> str:
        return self.message


class QueryValidationError(AttendanceError):
    """Requête de recherche invalide : jamais réessayée, renvoyée à l'appelant."""


class ReferentialError(AttendanceError):
    """Écriture refusée car elle référence un utilisateur, une cohorte ou une présence inexistants."""


class StorageError(AttendanceError):
    """Échec technique de lecture/écriture en base."""


class InvalidMembershipError(ReferentialError):
    """L'utilisateur n'est pas membre de la cohorte visée par la présence."""
