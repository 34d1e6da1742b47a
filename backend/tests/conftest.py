"""
Configuration partagée pour tous les tests.
Override la dépendance get_db pour éviter toute connexion réelle à PostgreSQL.
"""

import uuid

import pytest
from fastapi.testclient import TestClient
from unittest.mock import MagicMock

from app.database import get_db
from app.main import app

TENANT_ID = uuid.UUID("6c2c1f7e-1d5a-4f8e-9a0b-3c4d5e6f7a8b")


@pytest.fixture
def client():
    """Client HTTP de test avec la BDD mockée."""
    mock_db = MagicMock()
    app.dependency_overrides[get_db] = lambda: mock_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def headers():
    """En-têtes tenant + utilisateur attendus par les routes de présences."""
    return {"tenantid": str(TENANT_ID), "x-user-id": str(uuid.uuid4())}
