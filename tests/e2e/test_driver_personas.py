"""
End-to-end weekly cycles for typical driver personas, through the HTTP API.

Personas:
- affiliate_loan: affiliate repaying a short amortizing loan
- renter_new: renter in an onboarding fee exemption, paying rent
- referrer: affiliate earning a referral bonus from a referred driver
"""

from datetime import date
from decimal import Decimal

from fastapi.testclient import TestClient

from fleet_settlement.infrastructure.database.repositories import DriverRepository, FinancingRepository

WEEKS = ["2025-W40", "2025-W41", "2025-W42"]


def pay(client: TestClient, driver_id: str, week_id: str, **data):
    data.setdefault("payment_date", "2025-10-20")
    return client.post(f"/v1/drivers/{driver_id}/weeks/{week_id}/payment", data=data)


def settlement(client: TestClient, driver_id: str, week_id: str) -> dict:
    response = client.get(f"/v1/drivers/{driver_id}/weeks/{week_id}/settlement")
    assert response.status_code == 200, response.text
    return response.json()


def test_affiliate_loan_is_repaid_over_its_term(client, db, make_driver, add_ingestion, add_agreement):
    """
    affiliate_loan: 300 over 2 weeks at 0% interest
    Expected: charged in W40 and W41, completed afterwards, nothing in W42
    """
    make_driver("affiliate_loan")
    loan = add_agreement(
        "affiliate_loan", principal="300", term_weeks=2, interest_percent="0", start_date=date(2025, 9, 29)
    )
    for week_id in WEEKS:
        add_ingestion("affiliate_loan", "uber", "500.00", week_id=week_id)

    charged = []
    for week_id in WEEKS:
        data = settlement(client, "affiliate_loan", week_id)
        charged.append(Decimal(data["amounts"]["financing_cost"]))
        assert pay(client, "affiliate_loan", week_id).status_code == 201

    assert charged == [Decimal("150.00"), Decimal("150.00"), Decimal("0.00")]
    agreement = FinancingRepository(db).get(str(loan.id))
    assert agreement.status.value == "completed"

    # Paid weeks keep their values even after late imports
    add_ingestion("affiliate_loan", "uber", "999.00", week_id="2025-W40")
    assert Decimal(settlement(client, "affiliate_loan", "2025-W40")["net_payable"]) == Decimal("295.00")


def test_renter_exemption_ends_after_granted_weeks(client, db, make_driver, add_ingestion):
    """
    renter_new: two exempt weeks from W40, rent 120
    Expected: no admin fee in W40-W41, default fee again in W42
    """
    make_driver("renter_new", type="renter", rental_fee="120")
    DriverRepository(db).grant_exemption_weeks("renter_new", date(2025, 9, 29), 2, reason="onboarding")
    db.commit()
    for week_id in WEEKS:
        add_ingestion("renter_new", "bolt", "800.00", week_id=week_id)

    fees = [Decimal(settlement(client, "renter_new", w)["amounts"]["admin_fee"]) for w in WEEKS]

    assert fees == [Decimal("0.00"), Decimal("0.00"), Decimal("25.00")]
    # 800 - 48 vat - 25 fee - 120 rent
    assert Decimal(settlement(client, "renter_new", "2025-W42")["net_payable"]) == Decimal("607.00")


def test_referrer_is_paid_the_bonus_once(client, make_driver, add_ingestion):
    """
    referrer: referred driver earns 1000 in W40
    Expected: 18.80 referral bonus on the referrer's W40, paid exactly once
    """
    make_driver("referrer")
    make_driver("referred", referred_by="referrer")
    add_ingestion("referrer", "uber", "400.00")
    add_ingestion("referred", "uber", "1000.00")

    assert client.post("/v1/weeks/2025-W40/referral-bonuses").status_code == 200
    before = settlement(client, "referrer", "2025-W40")
    assert Decimal(before["amounts"]["referral_bonus"]) == Decimal("18.80")

    response = pay(client, "referrer", "2025-W40")
    assert response.status_code == 201
    assert Decimal(response.json()["base_amount"]) == Decimal(before["net_payable"])

    client.post("/v1/weeks/2025-W40/referral-bonuses")
    after = settlement(client, "referrer", "2025-W40")
    assert after["frozen"] is True
    assert Decimal(after["amounts"]["referral_bonus"]) == Decimal("18.80")
