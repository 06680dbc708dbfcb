"""GET settlement endpoints for a driver-week and for a whole week"""

import logging
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.orm import Session

from fleet_settlement.api.v1.schemas import SettlementResponse, WeekSettlementsResponse
from fleet_settlement.api.dependencies import get_request_id, get_settlement_service
from fleet_settlement.infrastructure.database.session import get_db
from fleet_settlement.services.settlement import SettlementService
from fleet_settlement.domain.exceptions import (
    IngestionUnavailableError,
    InvalidInputError,
    NoDataError,
    NotFoundError,
)

router = APIRouter()


@router.get("/drivers/{driver_id}/weeks/{week_id}/settlement", response_model=SettlementResponse)
async def get_settlement(
    driver_id: str,
    week_id: str,
    request: Request,
    force_refresh: bool = Query(False, description="Rewrite the draft even when unchanged"),
    db: Session = Depends(get_db),
    service: SettlementService = Depends(get_settlement_service),
):
    """
    Compute (or return the frozen) settlement for a driver-week.

    Unpaid weeks reflect the current ingestion data on every read; paid
    weeks always return the values captured at payment time.
    """
    request_id = get_request_id(request)

    try:
        record = await service.get_driver_week_settlement(driver_id, week_id, force_refresh=force_refresh)
        return SettlementResponse.from_record(record)

    except NotFoundError as e:
        db.rollback()
        raise HTTPException(status_code=404, detail=str(e))

    except NoDataError as e:
        db.rollback()
        raise HTTPException(status_code=404, detail={"code": "no_data", "message": str(e)})

    except InvalidInputError as e:
        db.rollback()
        raise HTTPException(status_code=422, detail=str(e))

    except IngestionUnavailableError as e:
        db.rollback()
        logging.error(f"Ingestion unavailable: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=503, detail="Ingestion sources unavailable")

    except Exception as e:
        db.rollback()
        logging.error(f"Unexpected error: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=500, detail="Internal server error")


@router.get("/weeks/{week_id}/settlements", response_model=WeekSettlementsResponse)
async def list_week_settlements(
    week_id: str,
    request: Request,
    db: Session = Depends(get_db),
    service: SettlementService = Depends(get_settlement_service),
):
    """
    Settlements for every driver with ingestion rows in the week.

    Drivers that cannot be settled are listed under errors; they do not
    fail the response.
    """
    request_id = get_request_id(request)

    try:
        batch = await service.list_week_settlements(week_id)

    except InvalidInputError as e:
        db.rollback()
        raise HTTPException(status_code=422, detail=str(e))

    except Exception as e:
        db.rollback()
        logging.error(f"Unexpected error: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=500, detail="Internal server error")

    return WeekSettlementsResponse.from_batch(batch)
