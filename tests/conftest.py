"""
Shared fixtures.

The application database is replaced by an in-memory mongomock database via
FastAPI's dependency overrides; no MongoDB server is needed.
"""

import os
import tempfile

os.environ["SECRET_KEY"] = "test-secret-key-for-the-rendiconti-suite"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["APP_ENV"] = "development"
os.environ["UPLOAD_DIR"] = tempfile.mkdtemp(prefix="rendiconti-signatures-")

import mongomock
import pytest
from fastapi.testclient import TestClient

from categories import seed_defaults
from database import ensure_indexes, get_db
from main import app

ADMIN = {
    "name": "Mario",
    "surname": "Rossi",
    "email": "mario.rossi@example.com",
    "password": "segreta1",
    "fiscal_code": "RSSMRA80A01H501U",
}

OTHER_ADMIN = {
    "name": "Luigi",
    "surname": "Verdi",
    "email": "luigi.verdi@example.com",
    "password": "segreta2",
    "fiscal_code": "VRDLGI75B02F205X",
}


@pytest.fixture
def db():
    database = mongomock.MongoClient()["rendiconto_test"]
    ensure_indexes(database)
    seed_defaults(database)
    return database


@pytest.fixture
def client(db):
    app.dependency_overrides[get_db] = lambda: db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def register(client):
    """Register a user and return (auth headers, user payload from the API)."""

    def _register(**overrides):
        payload = {**ADMIN, **overrides}
        response = client.post("/api/auth/register", json=payload)
        assert response.status_code == 201, response.text
        body = response.json()
        return {"Authorization": f"Bearer {body['token']}"}, body["data"]

    return _register


@pytest.fixture
def auth_headers(register):
    headers, _ = register()
    return headers


@pytest.fixture
def other_headers(register):
    headers, _ = register(**OTHER_ADMIN)
    return headers


@pytest.fixture
def create_beneficiary(client):
    def _create(headers, **overrides):
        payload = {
            "name": "Giovanna",
            "surname": "Bianchi",
            "fiscal_code": "BNCGNN40C03L219K",
            "birth_date": "1940-03-03",
            "address": {"street": "Via Roma 1", "city": "Torino", "postal_code": "10100", "province": "to"},
            "personal_conditions": "Vive in RSA, condizioni stabili.",
        }
        payload.update(overrides)
        response = client.post("/api/beneficiaries", json=payload, headers=headers)
        assert response.status_code == 201, response.text
        return response.json()["data"]

    return _create


@pytest.fixture
def complete_signature():
    return {
        "truthfulness_declaration": True,
        "data_processing_consent": True,
        "place": "Torino",
        "signing_date": "2024-01-15",
    }


@pytest.fixture
def create_report(client):
    def _create(headers, beneficiary_id, start="2023-01-01", end="2023-12-31", **overrides):
        payload = {
            "beneficiary_id": beneficiary_id,
            "period": {"start": start, "end": end},
            "case_reference": "R.G. 1234/2022",
        }
        payload.update(overrides)
        response = client.post("/api/reports", json=payload, headers=headers)
        assert response.status_code == 201, response.text
        return response.json()["data"]

    return _create
