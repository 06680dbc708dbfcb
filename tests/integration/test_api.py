"""Integration tests for API endpoints"""

from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from conftest import WEEK

SETTLEMENT_URL = f"/v1/drivers/d1/weeks/{WEEK}/settlement"
PAYMENT_URL = f"/v1/drivers/d1/weeks/{WEEK}/payment"


@pytest.fixture
def driver_week(make_driver, add_ingestion):
    """gross 1000, vat 60, fee 25, fuel 29.75 -> 885.25"""
    make_driver("d1")
    add_ingestion("d1", "uber", "700.00", trips=30)
    add_ingestion("d1", "bolt", "300.00", trips=10)
    add_ingestion("d1", "myprio", "10.00")
    add_ingestion("d1", "myprio", "15.50")
    add_ingestion("d1", "myprio", "4.25")


def test_health_endpoint(client: TestClient):
    """Test health check endpoint"""
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_metrics_endpoint(client: TestClient):
    """Test Prometheus metrics endpoint"""
    response = client.get("/metrics")
    assert response.status_code == 200
    assert "fleet_settlement_computations_total" in response.text


def test_get_settlement(client: TestClient, driver_week):
    response = client.get(SETTLEMENT_URL)

    assert response.status_code == 200
    data = response.json()
    assert Decimal(data["net_payable"]) == Decimal("885.25")
    assert Decimal(data["amounts"]["fuel_cost"]) == Decimal("29.75")
    assert data["payment_status"] == "pending"
    assert data["frozen"] is False
    assert data["trips"] == 40
    assert data["applied_fee"]["source"] == "default"
    assert "X-Request-ID" in response.headers


def test_request_id_is_propagated(client: TestClient, driver_week):
    response = client.get(SETTLEMENT_URL, headers={"X-Request-ID": "trace-123"})
    assert response.headers["X-Request-ID"] == "trace-123"


def test_unknown_driver_is_404(client: TestClient):
    response = client.get(f"/v1/drivers/ghost/weeks/{WEEK}/settlement")
    assert response.status_code == 404


def test_empty_week_is_no_data(client: TestClient, make_driver):
    make_driver("d1")

    response = client.get(SETTLEMENT_URL)

    assert response.status_code == 404
    assert response.json()["detail"]["code"] == "no_data"


def test_malformed_week_is_422(client: TestClient, driver_week):
    response = client.get("/v1/drivers/d1/weeks/2025-40/settlement")
    assert response.status_code == 422


def test_commit_payment_with_proof(client: TestClient, evidence_store, driver_week):
    response = client.post(
        PAYMENT_URL,
        data={"payment_date": "2025-10-06", "bonus_amount": "10.00", "discount_amount": "0.25", "actor": "ops"},
        files={"proof": ("transfer.pdf", b"%PDF-1.4", "application/pdf")},
    )

    assert response.status_code == 201
    data = response.json()
    assert Decimal(data["base_amount"]) == Decimal("885.25")
    assert Decimal(data["total_amount"]) == Decimal("895.00")
    assert data["proof_ref"] in evidence_store.objects

    settlement = client.get(SETTLEMENT_URL, params={"force_refresh": "true"}).json()
    assert settlement["payment_status"] == "paid"
    assert settlement["frozen"] is True


def test_second_payment_is_409_with_existing_transaction(client: TestClient, driver_week):
    first = client.post(PAYMENT_URL, data={"payment_date": "2025-10-06"})
    assert first.status_code == 201

    second = client.post(PAYMENT_URL, data={"payment_date": "2025-10-07"})

    assert second.status_code == 409
    detail = second.json()["detail"]
    assert detail["code"] == "payment_already_recorded"
    assert detail["transaction"]["transaction_id"] == first.json()["transaction_id"]


def test_payment_without_date_is_rejected(client: TestClient, driver_week):
    response = client.post(PAYMENT_URL, data={"bonus_amount": "5"})
    assert response.status_code == 422


def test_non_positive_total_is_422(client: TestClient, driver_week):
    response = client.post(PAYMENT_URL, data={"payment_date": "2025-10-06", "discount_amount": "900"})

    assert response.status_code == 422
    assert client.get(SETTLEMENT_URL).json()["payment_status"] == "pending"


def test_evidence_failure_is_503_and_week_stays_pending(client: TestClient, evidence_store, driver_week):
    evidence_store.fail_upload = True

    response = client.post(
        PAYMENT_URL,
        data={"payment_date": "2025-10-06"},
        files={"proof": ("transfer.pdf", b"%PDF-1.4", "application/pdf")},
    )

    assert response.status_code == 503
    assert client.get(SETTLEMENT_URL).json()["payment_status"] == "pending"


def test_week_listing(client: TestClient, driver_week, make_driver, add_ingestion):
    make_driver("d2")
    add_ingestion("d2", "bolt", "500.00")

    response = client.get(f"/v1/weeks/{WEEK}/settlements")

    assert response.status_code == 200
    data = response.json()
    assert [s["driver_id"] for s in data["settlements"]] == ["d1", "d2"]
    assert data["errors"] == []
    assert Decimal(data["total_net_payable"]) == Decimal("1330.25")


def test_referral_accrual_endpoint(client: TestClient, make_driver, add_ingestion):
    make_driver("alice")
    make_driver("carol", referred_by="alice")
    add_ingestion("carol", "uber", "1000.00")

    response = client.post(f"/v1/weeks/{WEEK}/referral-bonuses")

    assert response.status_code == 200
    referrers = response.json()["referrers"]
    assert referrers[0]["referrer_id"] == "alice"
    assert Decimal(referrers[0]["total"]) == Decimal("18.80")

    # Idempotent
    again = client.post(f"/v1/weeks/{WEEK}/referral-bonuses")
    assert again.status_code == 200
