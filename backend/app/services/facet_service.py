"""
Moteur de facettes : comptage des présences par valeur de champ et par statut.

Pour chaque facette demandée (ex. "session"), les présences sont regroupées par
valeur du champ ; chaque groupe (bucket) compte ses statuts et en déduit un
pourcentage formaté à 2 décimales :

    {"session": {"matin": {"present": 3, "absent": 1,
                           "present_percentage": "75.00", "absent_percentage": "25.00"}}}

Les statuts ne sont pas une énumération fixe : ce sont ceux observés dans les données.
Un statut observé ailleurs mais absent d'un bucket y reçoit "0.00" pour que le tri
soit toujours comparable ; ces "0.00" sont retirés de la réponse finale.
"""

import logging
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

from app.exceptions import QueryValidationError
from app.services.attendance_query import is_known_column, normalize_direction

logger = logging.getLogger(__name__)

PERCENTAGE_SUFFIX = "_percentage"
ZERO_PERCENTAGE = "0.00"
# Clés de tri toujours acceptées, même si le statut n'apparaît pas dans les données
DEFAULT_SORT_KEYS = {"present_percentage", "absent_percentage"}
STATUS_FIELD = "attendance"


def percentage_key(status: str) -> str:
    return f"{status}{PERCENTAGE_SUFFIX}"


def format_percentage(count: int, total: int) -> str:
    if total == 0:
        return ZERO_PERCENTAGE
    return f"{count * 100 / total:.2f}"


def facet_value_key(value: Any) -> str:
    """Clé de bucket : les valeurs sont toujours exposées comme chaînes."""
    if value is None:
        return "null"
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return str(value)


class FacetBucket:
    """Compteurs d'une valeur de facette : statut → nombre, et statut → pourcentage formaté."""

    def __init__(self) -> None:
        self.counts: Dict[str, int] = {}
        self.percentages: Dict[str, str] = {}

    def add(self, status: str) -> None:
        self.counts[status] = self.counts.get(status, 0) + 1

    @property
    def total(self) -> int:
        return sum(self.counts.values())

    def compute_percentages(self, observed_statuses: Iterable[str]) -> None:
        total = self.total
        for status, count in self.counts.items():
            self.percentages[percentage_key(status)] = format_percentage(count, total)
        # Remplissage à zéro : aide au tri, jamais exposé
        for status in observed_statuses:
            self.percentages.setdefault(percentage_key(status), ZERO_PERCENTAGE)

    def sort_value(self, key: str) -> float:
        return float(self.percentages.get(key, ZERO_PERCENTAGE))

    def to_dict(self) -> Dict[str, Union[int, str]]:
        result: Dict[str, Union[int, str]] = dict(self.counts)
        for key, value in self.percentages.items():
            if value != ZERO_PERCENTAGE:
                result[key] = value
        return result


Facet = Dict[str, FacetBucket]


def collect_statuses(records: Sequence[Any]) -> List[str]:
    """Statuts distincts observés, dans l'ordre de première apparition."""
    statuses: Dict[str, None] = {}
    for record in records:
        status = getattr(record, STATUS_FIELD, None)
        if status:
            statuses.setdefault(status, None)
    return list(statuses)


def validate_facets(facets: Sequence[str]) -> None:
    for facet in facets:
        if not is_known_column(facet):
            raise QueryValidationError(f"{facet} Invalid facet", field=facet)


def validate_sort_key(sort_field: str, observed_statuses: Sequence[str]) -> None:
    if sort_field in DEFAULT_SORT_KEYS:
        return
    if sort_field.endswith(PERCENTAGE_SUFFIX) and sort_field[: -len(PERCENTAGE_SUFFIX)] in observed_statuses:
        return
    raise QueryValidationError(f"Invalid sort[0]: {sort_field}", field=sort_field)


def build_facet(records: Sequence[Any], field: str, observed_statuses: Sequence[str]) -> Facet:
    """Regroupe les présences par valeur de `field` et calcule les pourcentages de chaque bucket."""
    buckets: Facet = {}
    for record in records:
        status = getattr(record, STATUS_FIELD, None)
        if not status:
            continue
        key = facet_value_key(getattr(record, field))
        buckets.setdefault(key, FacetBucket()).add(status)

    for bucket in buckets.values():
        bucket.compute_percentages(observed_statuses)
    return buckets


def sort_facet(buckets: Facet, sort_field: str, direction: str) -> Facet:
    """Tri stable des buckets sur un pourcentage ; à égalité, l'ordre d'insertion est conservé."""
    ordered = sorted(
        buckets.items(),
        key=lambda item: item[1].sort_value(sort_field),
        reverse=(direction == "desc"),
    )
    return dict(ordered)


def faceted_search(
    records: Sequence[Any],
    facets: Sequence[str],
    sort: Optional[Sequence[str]] = None,
) -> Dict[str, Dict[str, Dict[str, Union[int, str]]]]:
    """
    Construit l'arbre de facettes pour un ensemble de présences déjà filtré.

    Chaque facette est traitée indépendamment. Une facette inconnue ou une clé
    de tri invalide interrompt toute la requête (QueryValidationError).
    """
    validate_facets(facets)
    observed_statuses = collect_statuses(records)

    sort_field: Optional[str] = None
    direction = "desc"
    if sort:
        sort_field, sort_order = sort
        validate_sort_key(sort_field, observed_statuses)
        direction = normalize_direction(sort_order)

    tree: Dict[str, Facet] = {}
    for field in facets:
        buckets = build_facet(records, field, observed_statuses)
        if sort_field is not None:
            buckets = sort_facet(buckets, sort_field, direction)
        tree[field] = buckets

    logger.debug(
        "Facettes %s calculées sur %d présences (%d statuts observés)",
        list(facets), len(records), len(observed_statuses),
    )

    return {
        field: {value: bucket.to_dict() for value, bucket in buckets.items()}
        for field, buckets in tree.items()
    }
