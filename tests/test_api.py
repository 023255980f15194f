"""
Integration tests for the Microcredit API
Tests end-to-end workflows using FastAPI TestClient
"""

import pytest
from fastapi.testclient import TestClient

from microcredit.api import app
from microcredit.api.deps import LoanSystem, get_loan_system
from microcredit.config import MicrocreditConfig
from microcredit.storage import InMemoryStorage


TERMS = {
    "principal": "1000000",
    "annual_rate_percent": "10",
    "number_of_installments": 12,
    "frequency": "monthly",
    "start_date": "2024-01-01",
}


@pytest.fixture
def client():
    """Test client backed by in-memory storage with a 3 day grace and 1% daily fee"""
    config = MicrocreditConfig(
        _env_file=None,
        default_grace_days=3,
        default_daily_late_rate_percent="1",
    )
    test_system = LoanSystem(storage=InMemoryStorage(), config=config)
    app.dependency_overrides[get_loan_system] = lambda: test_system

    yield TestClient(app)
    app.dependency_overrides.clear()


def create_loan(client, **overrides):
    r = client.post("/loans", json={
        "client_id": "client-1",
        "terms": {**TERMS, **overrides},
    })
    assert r.status_code == 201
    return r.json()


class TestHealthEndpoints:
    """Test basic health and root endpoints"""

    def test_health(self, client):
        r = client.get("/health")
        assert r.status_code == 200
        assert r.json()["status"] == "healthy"

    def test_root(self, client):
        r = client.get("/")
        assert r.status_code == 200
        data = r.json()
        assert data["name"] == "Microcredit Loan Engine API"
        assert "endpoints" in data


class TestSchedulePreview:
    """Schedule preview without persistence"""

    def test_preview(self, client):
        r = client.post("/loans/schedule", json=TERMS)
        assert r.status_code == 200
        data = r.json()

        assert data["amortization_system"] == "declining_balance"
        assert len(data["schedule"]) == 12
        first = data["schedule"][0]
        assert first["installment_number"] == 1
        assert first["due_date"] == "2024-01-31"
        assert first["installment_amount"] == "146763.32"
        assert first["interest_portion"] == "100000.00"
        assert first["principal_portion"] == "46763.32"
        assert data["schedule"][-1]["outstanding_balance_after"] == "0.00"
        assert data["totals"]["total_principal"] == "1000000.00"

    def test_preview_flat(self, client):
        r = client.post("/loans/schedule", json={
            **TERMS, "principal": "500.000", "annual_rate_percent": "20",
            "number_of_installments": 5, "amortization_system": "flat",
        })
        assert r.status_code == 200
        data = r.json()
        assert data["amortization_system"] == "flat"
        assert data["schedule"][0]["installment_amount"] == "120000.00"
        assert data["totals"]["total_payable"] == "600000.00"
        assert data["totals"]["total_payable_display"] == "$ 600.000"

    @pytest.mark.parametrize("override", [
        {"principal": "0"},
        {"principal": "abc"},
        {"annual_rate_percent": "-1"},
        {"number_of_installments": 0},
        {"frequency": "daily"},
        {"start_date": "not-a-date"},
        {"amortization_system": "balloon"},
    ])
    def test_invalid_terms(self, client, override):
        r = client.post("/loans/schedule", json={**TERMS, **override})
        assert r.status_code == 400

    def test_nothing_stored(self, client):
        client.post("/loans/schedule", json=TERMS)
        assert client.get("/loans").json()["loans"] == []


class TestLoanFlow:
    """End-to-end origination and settlement"""

    def test_create_and_get_loan(self, client):
        loan = create_loan(client)
        assert loan["outstanding_balance"] == "1000000.00"
        assert loan["outstanding_balance_display"] == "$ 1.000.000"
        assert loan["status"] == "active"
        assert loan["end_date"] == "2024-12-26"

        r = client.get(f"/loans/{loan['id']}")
        assert r.status_code == 200
        assert r.json()["client_id"] == "client-1"

    def test_unknown_loan(self, client):
        assert client.get("/loans/missing").status_code == 404
        assert client.get("/loans/missing/installments").status_code == 404
        assert client.get("/loans/missing/payments").status_code == 404

    def test_installments_with_live_fee(self, client):
        loan = create_loan(client)
        r = client.get(f"/loans/{loan['id']}/installments", params={"as_of": "2024-02-05"})
        assert r.status_code == 200
        installments = r.json()["installments"]

        assert len(installments) == 12
        assert installments[0]["status"] == "pending"
        assert installments[0]["late_fee"] == "7338.17"
        assert installments[1]["late_fee"] == "0.00"

    def test_quote_and_pay(self, client):
        loan = create_loan(client)
        installment_id = f"{loan['id']}_1"

        r = client.get(f"/installments/{installment_id}/quote", params={"as_of": "2024-02-05"})
        assert r.status_code == 200
        quote = r.json()
        assert quote["days_late"] == 5
        assert quote["late_fee"] == "7338.17"
        assert quote["suggested_amount"] == "154101.49"

        r = client.post(f"/installments/{installment_id}/payments", json={
            "amount": quote["suggested_amount"],
            "as_of": "2024-02-05",
        })
        assert r.status_code == 201
        data = r.json()
        assert data["payment"]["late_fee_applied"] == "7338.17"
        assert data["payment"]["interest_applied"] == "100000.00"
        assert data["payment"]["principal_applied"] == "46763.32"
        assert data["payment"]["payment_method"] == "cash"
        assert data["installment"]["status"] == "paid"
        assert data["loan"]["outstanding_balance"] == "953236.68"

        payments = client.get(f"/loans/{loan['id']}/payments").json()["payments"]
        assert len(payments) == 1
        assert payments[0]["amount_tendered"] == "154101.49"

        # Paid installments keep the fee they were charged
        installments = client.get(f"/loans/{loan['id']}/installments",
                                  params={"as_of": "2024-06-01"}).json()["installments"]
        assert installments[0]["late_fee"] == "7338.17"
        assert installments[0]["late_fee_applied"] == "7338.17"

    def test_double_payment_conflict(self, client):
        loan = create_loan(client)
        installment_id = f"{loan['id']}_1"
        payment = {"amount": "146763.32", "as_of": "2024-01-31"}

        assert client.post(f"/installments/{installment_id}/payments", json=payment).status_code == 201
        assert client.post(f"/installments/{installment_id}/payments", json=payment).status_code == 409
        assert client.get(f"/installments/{installment_id}/quote").status_code == 409

    def test_payment_errors(self, client):
        loan = create_loan(client)
        assert client.post("/installments/missing/payments",
                           json={"amount": "100"}).status_code == 404
        assert client.get("/installments/missing/quote").status_code == 404
        r = client.post(f"/installments/{loan['id']}_1/payments", json={"amount": "lots"})
        assert r.status_code == 400
        r = client.get(f"/installments/{loan['id']}_1/quote", params={"as_of": "yesterday"})
        assert r.status_code == 400

    def test_colombian_amount_accepted(self, client):
        loan = create_loan(client)
        r = client.post(f"/installments/{loan['id']}_1/payments", json={
            "amount": "146.763,32", "as_of": "2024-01-31", "payment_method": "transfer",
        })
        assert r.status_code == 201
        assert r.json()["payment"]["principal_applied"] == "46763.32"
        assert r.json()["payment"]["payment_method"] == "transfer"

    def test_list_loans_display_status(self, client):
        create_loan(client)
        r = client.get("/loans", params={"as_of": "2024-02-01"})
        assert r.status_code == 200
        loans = r.json()["loans"]
        assert len(loans) == 1
        assert loans[0]["display_status"] == "delinquent"

        loans = client.get("/loans", params={"as_of": "2024-01-15"}).json()["loans"]
        assert loans[0]["display_status"] == "active"

    def test_list_loans_filtered_with_counts(self, client):
        late = create_loan(client)
        current = create_loan(client)
        client.post(f"/installments/{current['id']}_1/payments",
                    json={"amount": "146763.32", "as_of": "2024-01-31"})
        paid = create_loan(client, principal="100", annual_rate_percent="0", number_of_installments=1)
        client.post(f"/installments/{paid['id']}_1/payments",
                    json={"amount": "100", "as_of": "2024-01-31"})

        r = client.get("/loans", params={"status": "active", "as_of": "2024-02-01"})
        assert r.status_code == 200
        data = r.json()
        assert [loan["id"] for loan in data["loans"]] == [current["id"]]
        assert data["counts"] == {"all": 3, "active": 1, "delinquent": 1, "paid": 1}

        delinquent = client.get("/loans", params={"status": "delinquent", "as_of": "2024-02-01"}).json()
        assert [loan["id"] for loan in delinquent["loans"]] == [late["id"]]
        assert delinquent["loans"][0]["display_status"] == "delinquent"

        paid_list = client.get("/loans", params={"status": "paid"}).json()["loans"]
        assert [loan["id"] for loan in paid_list] == [paid["id"]]

    def test_list_loans_unknown_status(self, client):
        r = client.get("/loans", params={"status": "overdue"})
        assert r.status_code == 400


class TestParameters:
    """Business parameter endpoints"""

    def test_seeded_parameters(self, client):
        r = client.get("/parameters")
        assert r.status_code == 200
        values = {p["key"]: p["value"] for p in r.json()["parameters"]}
        assert values == {
            "amortization_system": "declining_balance",
            "daily_late_rate_percent": "1",
            "grace_days": "3",
        }

    def test_update_grace_days(self, client):
        loan = create_loan(client)
        r = client.put("/parameters/grace_days", json={"value": "10"})
        assert r.status_code == 200
        assert r.json()["value"] == "10"

        quote = client.get(f"/installments/{loan['id']}_1/quote",
                           params={"as_of": "2024-02-05"}).json()
        assert quote["late_fee"] == "0.00"

    def test_default_system_used_when_omitted(self, client):
        client.put("/parameters/amortization_system", json={"value": "flat"})
        r = client.post("/loans/schedule", json=TERMS)
        assert r.json()["amortization_system"] == "flat"

    def test_malformed_rate_rejected_on_write(self, client):
        loan = create_loan(client)
        r = client.put("/parameters/daily_late_rate_percent", json={"value": "lots"})
        assert r.status_code == 400
        assert "daily_late_rate_percent" in r.json()["detail"]

        values = {p["key"]: p["value"] for p in client.get("/parameters").json()["parameters"]}
        assert values["daily_late_rate_percent"] == "1"
        r = client.get(f"/installments/{loan['id']}_1/quote")
        assert r.status_code == 200

    @pytest.mark.parametrize("key,value", [
        ("grace_days", "-2"),
        ("grace_days", "1.5"),
        ("amortization_system", "balloon"),
    ])
    def test_invalid_values_rejected(self, client, key, value):
        r = client.put(f"/parameters/{key}", json={"value": value})
        assert r.status_code == 400

    def test_unknown_key_stored(self, client):
        r = client.put("/parameters/branch_name", json={"value": "Centro"})
        assert r.status_code == 200
        assert r.json()["value"] == "Centro"


class TestPortfolio:
    """Portfolio summary endpoint"""

    def test_summary(self, client):
        create_loan(client)
        create_loan(client, principal="500000")

        r = client.get("/portfolio/summary", params={"as_of": "2024-01-31"})
        assert r.status_code == 200
        data = r.json()
        assert data["as_of"] == "2024-01-31"
        assert data["active_loans"] == 2
        assert data["portfolio_value"] == "1500000.00"
        assert data["portfolio_value_display"] == "$ 1.500.000"
        assert data["payments_today"] == 0
        assert data["delinquent_loans"] == 0
