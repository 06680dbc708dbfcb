"""POST /v1/weeks/{week_id}/referral-bonuses - accrue the week's referral bonuses"""

import logging
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from fleet_settlement.api.v1.schemas import ReferralAccrualResponse
from fleet_settlement.api.dependencies import get_referral_service, get_request_id
from fleet_settlement.infrastructure.database.session import get_db
from fleet_settlement.services.referrals import ReferralAccrualService
from fleet_settlement.domain.exceptions import InvalidInputError

router = APIRouter()


@router.post("/weeks/{week_id}/referral-bonuses", response_model=ReferralAccrualResponse)
def accrue_referral_bonuses(
    week_id: str,
    request: Request,
    db: Session = Depends(get_db),
    service: ReferralAccrualService = Depends(get_referral_service),
):
    """Safe to repeat: rows already accrued for the week are left as they are"""
    try:
        bonuses = service.accrue_week(week_id)
        return ReferralAccrualResponse.from_bonuses(week_id, bonuses)

    except InvalidInputError as e:
        db.rollback()
        raise HTTPException(status_code=422, detail=str(e))

    except Exception as e:
        db.rollback()
        logging.error(f"Unexpected error: {e}", extra={"request_id": get_request_id(request)})
        raise HTTPException(status_code=500, detail="Internal server error")
