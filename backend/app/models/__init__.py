# Importe tous les modèles pour enregistrer leurs tables dans Base.metadata
# avant que SQLAlchemy tente de résoudre les clés étrangères inter-modèles.
# Sans cet import, les FK comme attendance.context_id → cohorts.id échouent
# avec NoReferencedTableError si cohort.py n'est pas chargé avant attendance.py.

from app.models.user import User  # noqa: F401  (doit précéder cohort et attendance)
from app.models.cohort import Cohort, CohortMember  # noqa: F401
from app.models.attendance import Attendance  # noqa: F401
