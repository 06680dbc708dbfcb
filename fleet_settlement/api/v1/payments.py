"""POST /v1/drivers/{driver_id}/weeks/{week_id}/payment - record a weekly payment"""

import logging
from datetime import date
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile
from sqlalchemy.orm import Session

from fleet_settlement.api.v1.schemas import PaymentResponse
from fleet_settlement.api.dependencies import get_payment_recorder, get_request_id
from fleet_settlement.infrastructure.database.session import get_db
from fleet_settlement.services.payments import PaymentRecorder
from fleet_settlement.domain.models import EvidenceFile, PaymentRequest
from fleet_settlement.domain.exceptions import (
    ConflictError,
    IngestionUnavailableError,
    InvalidInputError,
    NoDataError,
    NotFoundError,
    PaymentAlreadyRecordedError,
    StorageFailureError,
)

router = APIRouter()


@router.post("/drivers/{driver_id}/weeks/{week_id}/payment", response_model=PaymentResponse, status_code=201)
async def commit_payment(
    driver_id: str,
    week_id: str,
    request: Request,
    payment_date: date = Form(...),
    bonus_amount: Decimal = Form(Decimal("0")),
    discount_amount: Decimal = Form(Decimal("0")),
    notes: str = Form(""),
    actor: str = Form("system"),
    proof: Optional[UploadFile] = File(None),
    db: Session = Depends(get_db),
    recorder: PaymentRecorder = Depends(get_payment_recorder),
):
    """
    Commit the payment for a driver-week.

    The proof upload, the transaction and the frozen record succeed or fail
    together; a failed commit leaves the week pending with no stored proof.
    """
    request_id = get_request_id(request)

    try:
        evidence = None
        if proof is not None and proof.filename:
            evidence = EvidenceFile(
                filename=proof.filename,
                content=await proof.read(),
                content_type=proof.content_type or "application/octet-stream",
            )

        transaction = await recorder.commit_payment(
            driver_id,
            week_id,
            PaymentRequest(
                payment_date=payment_date,
                bonus_amount=bonus_amount,
                discount_amount=discount_amount,
                notes=notes,
                actor=actor,
                proof=evidence,
            ),
        )
        return PaymentResponse.from_transaction(transaction)

    except PaymentAlreadyRecordedError as e:
        db.rollback()
        detail = {"code": "payment_already_recorded", "message": str(e)}
        if e.transaction is not None:
            detail["transaction"] = PaymentResponse.from_transaction(e.transaction).model_dump(mode="json")
        raise HTTPException(status_code=409, detail=detail)

    except ConflictError as e:
        db.rollback()
        logging.warning(f"Payment conflict: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=409, detail={"code": "commit_conflict", "message": str(e)})

    except NotFoundError as e:
        db.rollback()
        raise HTTPException(status_code=404, detail=str(e))

    except NoDataError as e:
        db.rollback()
        raise HTTPException(status_code=404, detail={"code": "no_data", "message": str(e)})

    except InvalidInputError as e:
        db.rollback()
        raise HTTPException(status_code=422, detail=str(e))

    except (StorageFailureError, IngestionUnavailableError) as e:
        db.rollback()
        logging.error(f"Payment not recorded: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=503, detail=str(e))

    except Exception as e:
        db.rollback()
        logging.error(f"Unexpected error: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=500, detail="Internal server error")
