"""
Tests for financial reports: totals, period overlap, completeness and the
draft -> completed -> submitted workflow.
"""

import base64
from datetime import datetime

import pytest

from reports import completeness_of, compute_totals

PNG_DATA_URL = "data:image/png;base64," + base64.b64encode(b"\x89PNG\r\n\x1a\n").decode()

LEDGER = {
    "income": [
        {"category": "banca", "description": "Interessi", "amount": 10.5},
        {"category": "Pensione", "amount": 25},
    ],
    "expense": [{"category": "salute", "description": "Farmaci", "amount": 5}],
}


class TestDerivedValues:
    """Unit tests for totals and the completeness check."""

    def test_compute_totals(self):
        """Test income, expense and net."""
        assert compute_totals({"ledger": LEDGER}) == {"income": 35.5, "expense": 5, "net": 30.5}

    def test_compute_totals_empty(self):
        """Test a report without entries."""
        assert compute_totals({}) == {"income": 0, "expense": 0, "net": 0}

    def test_completeness_lists_every_gap(self):
        """Test an empty report misses everything."""
        complete, missing = completeness_of({}, None)
        assert complete is False
        assert missing == [
            "Start date missing",
            "End date missing",
            "Case reference missing",
            "Beneficiary not selected",
            "Personal conditions missing",
            "Truthfulness declaration missing",
            "Data processing consent missing",
            "Signature place missing",
            "Signature date missing",
        ]

    def test_completeness_uses_beneficiary_narrative(self):
        """Test the beneficiary's narrative satisfies the check."""
        report = {
            "period": {"start": datetime(2023, 1, 1), "end": datetime(2023, 12, 31)},
            "case_reference": "R.G. 1/2023",
            "beneficiary_id": "64b000000000000000000001",
            "signature": {
                "truthfulness_declaration": True,
                "data_processing_consent": True,
                "place": "Torino",
                "signing_date": datetime(2024, 1, 15),
            },
        }
        assert completeness_of(report, {"personal_conditions": "Stabile"}) == (True, [])
        assert completeness_of(report, {"personal_conditions": "  "}) == (False, ["Personal conditions missing"])
        assert completeness_of({**report, "personal_conditions": "Ricoverata"}, {}) == (True, [])


class TestCreate:
    """Tests for POST /api/reports."""

    def test_create_derives_year_state_and_totals(self, client, auth_headers, create_beneficiary):
        """Test a new report starts as a draft with computed totals."""
        beneficiary = create_beneficiary(auth_headers)
        response = client.post(
            "/api/reports",
            json={
                "beneficiary_id": beneficiary["id"],
                "period": {"start": "2023-01-01", "end": "2023-12-31"},
                "case_reference": "R.G. 1234/2022",
                "ledger": LEDGER,
            },
            headers=auth_headers,
        )
        assert response.status_code == 201
        report = response.json()["data"]
        assert report["year"] == 2023
        assert report["state"] == "draft"
        assert report["period"] == {"start": "2023-01-01", "end": "2023-12-31"}
        assert report["totals"] == {"income": 35.5, "expense": 5, "net": 30.5}
        assert [e["category"] for e in report["ledger"]["income"]] == ["BANCA", "PENSIONE"]
        assert report["beneficiary"]["full_name"] == "Giovanna Bianchi"

    def test_end_must_follow_start(self, client, auth_headers, create_beneficiary):
        """Test an inverted period is rejected."""
        beneficiary = create_beneficiary(auth_headers)
        response = client.post(
            "/api/reports",
            json={
                "beneficiary_id": beneficiary["id"],
                "period": {"start": "2023-12-31", "end": "2023-01-01"},
                "case_reference": "R.G. 1/2023",
            },
            headers=auth_headers,
        )
        assert response.status_code == 422
        assert response.json()["error"] == "validation_failed"

    def test_negative_amount_rejected(self, client, auth_headers, create_beneficiary):
        """Test ledger amounts cannot be negative."""
        beneficiary = create_beneficiary(auth_headers)
        response = client.post(
            "/api/reports",
            json={
                "beneficiary_id": beneficiary["id"],
                "period": {"start": "2023-01-01", "end": "2023-12-31"},
                "case_reference": "R.G. 1/2023",
                "ledger": {"income": [{"category": "BANCA", "amount": -1}]},
            },
            headers=auth_headers,
        )
        assert response.status_code == 422

    def test_unknown_or_inactive_beneficiary(self, client, auth_headers, other_headers, create_beneficiary):
        """Test a report needs one of the caller's active beneficiaries."""
        foreign = create_beneficiary(other_headers)
        response = client.post(
            "/api/reports",
            json={
                "beneficiary_id": foreign["id"],
                "period": {"start": "2023-01-01", "end": "2023-12-31"},
                "case_reference": "R.G. 1/2023",
            },
            headers=auth_headers,
        )
        assert response.status_code == 404
        assert response.json()["error"] == "beneficiary_not_found"

    def test_overlapping_period(self, client, auth_headers, create_beneficiary, create_report):
        """Test periods of the same beneficiary cannot overlap, inclusive of the edges."""
        beneficiary = create_beneficiary(auth_headers)
        create_report(auth_headers, beneficiary["id"], start="2023-01-01", end="2023-12-31")

        response = client.post(
            "/api/reports",
            json={
                "beneficiary_id": beneficiary["id"],
                "period": {"start": "2023-12-31", "end": "2024-06-30"},
                "case_reference": "R.G. 1/2024",
            },
            headers=auth_headers,
        )
        assert response.status_code == 409
        assert response.json()["error"] == "period_overlap"

        create_report(auth_headers, beneficiary["id"], start="2024-01-01", end="2024-12-31")

    def test_overlap_is_per_beneficiary(self, client, auth_headers, create_beneficiary, create_report):
        """Test the same period for two beneficiaries is fine."""
        first = create_beneficiary(auth_headers)
        second = create_beneficiary(auth_headers, name="Paolo", surname="Neri", fiscal_code="NREPLA50D04A662Y")
        create_report(auth_headers, first["id"])
        create_report(auth_headers, second["id"])

    def test_applied_signature_cannot_be_supplied(self, client, auth_headers, create_beneficiary, create_report):
        """Test the applied image is never taken from the request body."""
        beneficiary = create_beneficiary(auth_headers)
        report = create_report(
            auth_headers,
            beneficiary["id"],
            signature={"applied_signature": {"image": PNG_DATA_URL, "applied_at": "2024-01-01T10:00:00"}},
        )
        assert report["signature"]["applied_signature"] is None


class TestUpdate:
    """Tests for PUT /api/reports/{id}."""

    def test_signature_fields_are_merged(self, client, auth_headers, create_beneficiary, create_report):
        """Test updating one signature field keeps the others."""
        beneficiary = create_beneficiary(auth_headers)
        report = create_report(auth_headers, beneficiary["id"], signature={"truthfulness_declaration": True})

        response = client.put(
            f"/api/reports/{report['id']}", json={"signature": {"place": "Torino"}}, headers=auth_headers
        )
        assert response.status_code == 200
        signature = response.json()["data"]["signature"]
        assert signature["place"] == "Torino"
        assert signature["truthfulness_declaration"] is True

    def test_period_change_rechecks_overlap(self, client, auth_headers, create_beneficiary, create_report):
        """Test moving a period onto another report's period."""
        beneficiary = create_beneficiary(auth_headers)
        create_report(auth_headers, beneficiary["id"], start="2022-01-01", end="2022-12-31")
        report = create_report(auth_headers, beneficiary["id"], start="2023-01-01", end="2023-12-31")

        clash = client.put(
            f"/api/reports/{report['id']}",
            json={"period": {"start": "2022-06-01", "end": "2023-05-31"}},
            headers=auth_headers,
        )
        assert clash.status_code == 409

        moved = client.put(
            f"/api/reports/{report['id']}",
            json={"period": {"start": "2023-03-01", "end": "2024-02-29"}},
            headers=auth_headers,
        )
        assert moved.status_code == 200
        assert moved.json()["data"]["year"] == 2023
        assert moved.json()["data"]["period"]["end"] == "2024-02-29"

    def test_ledger_replaced(self, client, auth_headers, create_beneficiary, create_report):
        """Test the ledger is replaced wholesale and totals follow."""
        beneficiary = create_beneficiary(auth_headers)
        report = create_report(auth_headers, beneficiary["id"])
        response = client.put(f"/api/reports/{report['id']}", json={"ledger": LEDGER}, headers=auth_headers)
        assert response.json()["data"]["totals"]["net"] == 30.5

    def test_other_users_report(self, client, auth_headers, other_headers, create_beneficiary, create_report):
        """Test another user's report is not found."""
        beneficiary = create_beneficiary(auth_headers)
        report = create_report(auth_headers, beneficiary["id"])
        assert client.get(f"/api/reports/{report['id']}", headers=other_headers).status_code == 404
        assert client.put(f"/api/reports/{report['id']}", json={"notes": "x"}, headers=other_headers).status_code == 404


class TestWorkflow:
    """Tests for completeness and state transitions."""

    @pytest.fixture
    def draft(self, auth_headers, create_beneficiary, create_report):
        beneficiary = create_beneficiary(auth_headers)
        return create_report(auth_headers, beneficiary["id"], ledger=LEDGER)

    def test_completeness_endpoint(self, client, auth_headers, draft):
        """Test the completeness report of a fresh draft."""
        body = client.get(f"/api/reports/{draft['id']}/completeness", headers=auth_headers).json()["data"]
        assert body["complete"] is False
        assert body["missing"] == [
            "Truthfulness declaration missing",
            "Data processing consent missing",
            "Signature place missing",
            "Signature date missing",
        ]
        assert body["totals"] == {"income": 35.5, "expense": 5, "net": 30.5, "net_worth": 0}

    def test_incomplete_report_cannot_be_completed(self, client, auth_headers, draft):
        """Test the completeness gate on state changes."""
        response = client.patch(f"/api/reports/{draft['id']}/state", json={"state": "completed"}, headers=auth_headers)
        assert response.status_code == 422
        body = response.json()
        assert body["error"] == "incomplete_report"
        assert "Signature place missing" in body["details"]

    def test_missing_narrative_blocks_completion(
        self, client, auth_headers, create_beneficiary, create_report, complete_signature
    ):
        """Test the narrative alone keeps a signed report from completing, until it is written."""
        beneficiary = create_beneficiary(auth_headers, personal_conditions=None)
        report = create_report(auth_headers, beneficiary["id"], signature=complete_signature)
        url = f"/api/reports/{report['id']}"

        blocked = client.patch(f"{url}/state", json={"state": "completed"}, headers=auth_headers)
        assert blocked.status_code == 422
        assert blocked.json()["error"] == "incomplete_report"
        assert blocked.json()["details"] == ["Personal conditions missing"]

        client.put(url, json={"personal_conditions": "Ricoverata in RSA"}, headers=auth_headers)
        completed = client.patch(f"{url}/state", json={"state": "completed"}, headers=auth_headers)
        assert completed.status_code == 200
        assert completed.json()["data"]["state"] == "completed"

    def test_full_workflow(self, client, auth_headers, draft, complete_signature):
        """Test draft -> completed -> draft -> submitted, after which the report is locked."""
        url = f"/api/reports/{draft['id']}"
        client.put(url, json={"signature": complete_signature}, headers=auth_headers)
        assert client.get(f"{url}/completeness", headers=auth_headers).json()["data"]["complete"] is True

        completed = client.patch(f"{url}/state", json={"state": "completed"}, headers=auth_headers)
        assert completed.status_code == 200
        assert completed.json()["data"]["state"] == "completed"

        back = client.patch(f"{url}/state", json={"state": "draft"}, headers=auth_headers)
        assert back.json()["data"]["state"] == "draft"

        submitted = client.patch(f"{url}/state", json={"state": "submitted"}, headers=auth_headers)
        assert submitted.status_code == 200

        for response in (
            client.put(url, json={"notes": "modifica"}, headers=auth_headers),
            client.patch(f"{url}/state", json={"state": "draft"}, headers=auth_headers),
            client.delete(url, headers=auth_headers),
        ):
            assert response.status_code == 409
            assert response.json()["error"] == "report_locked"

    def test_unknown_state(self, client, auth_headers, draft):
        """Test an unknown target state is a validation error."""
        response = client.patch(f"/api/reports/{draft['id']}/state", json={"state": "archived"}, headers=auth_headers)
        assert response.status_code == 422

    def test_delete_draft(self, client, auth_headers, draft):
        """Test a draft can be deleted."""
        assert client.delete(f"/api/reports/{draft['id']}", headers=auth_headers).status_code == 200
        assert client.get(f"/api/reports/{draft['id']}", headers=auth_headers).status_code == 404


class TestSignatureApplication:
    """Tests for POST /api/reports/{id}/signature."""

    def test_requires_stored_signature(self, client, auth_headers, create_beneficiary, create_report):
        """Test applying without a stored signature."""
        beneficiary = create_beneficiary(auth_headers)
        report = create_report(auth_headers, beneficiary["id"])
        response = client.post(
            f"/api/reports/{report['id']}/signature", json={"password": "segreta1"}, headers=auth_headers
        )
        assert response.status_code == 404

    def test_applies_stored_signature(self, client, auth_headers, create_beneficiary, create_report):
        """Test the stored image is copied onto the report after a password check."""
        client.post(
            "/api/auth/signature",
            json={"password": "segreta1", "signature": PNG_DATA_URL},
            headers=auth_headers,
        )
        beneficiary = create_beneficiary(auth_headers)
        report = create_report(auth_headers, beneficiary["id"])
        url = f"/api/reports/{report['id']}/signature"

        wrong = client.post(url, json={"password": "sbagliata"}, headers=auth_headers)
        assert wrong.status_code == 422
        assert wrong.json()["details"][0]["field"] == "password"
        assert "WWW-Authenticate" not in wrong.headers

        response = client.post(url, json={"password": "segreta1"}, headers=auth_headers)
        assert response.status_code == 200
        applied = response.json()["data"]["signature"]["applied_signature"]
        assert applied["image"] == PNG_DATA_URL
        assert applied["applied_at"]


class TestListing:
    """Tests for GET /api/reports."""

    def test_filters(self, client, auth_headers, create_beneficiary, create_report, complete_signature):
        """Test the state, year and search filters."""
        first = create_beneficiary(auth_headers)
        second = create_beneficiary(auth_headers, name="Paolo", surname="Neri", fiscal_code="NREPLA50D04A662Y")
        create_report(auth_headers, first["id"], start="2022-01-01", end="2022-12-31")
        done = create_report(
            auth_headers, first["id"], start="2023-01-01", end="2023-12-31", signature=complete_signature
        )
        create_report(auth_headers, second["id"], case_reference="R.G. 999/2023")
        client.patch(f"/api/reports/{done['id']}/state", json={"state": "completed"}, headers=auth_headers)

        body = client.get("/api/reports", headers=auth_headers).json()
        assert body["pagination"]["totalItems"] == 3
        assert all("beneficiary" in r for r in body["data"])

        by_year = client.get("/api/reports?year=2022", headers=auth_headers).json()["data"]
        assert [r["year"] for r in by_year] == [2022]

        by_state = client.get("/api/reports?state=completed", headers=auth_headers).json()["data"]
        assert [r["id"] for r in by_state] == [done["id"]]

        by_name = client.get("/api/reports?search=neri", headers=auth_headers).json()["data"]
        assert [r["beneficiary"]["surname"] for r in by_name] == ["Neri"]

        by_case = client.get("/api/reports?search=999/", headers=auth_headers).json()["data"]
        assert [r["case_reference"] for r in by_case] == ["R.G. 999/2023"]

    def test_isolated_per_user(self, client, auth_headers, other_headers, create_beneficiary, create_report):
        """Test a user only lists their own reports."""
        beneficiary = create_beneficiary(auth_headers)
        create_report(auth_headers, beneficiary["id"])
        assert client.get("/api/reports", headers=other_headers).json()["data"] == []
