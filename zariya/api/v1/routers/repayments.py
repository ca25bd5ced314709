from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from zariya.api import deps
from zariya.schemas.loan import RepaymentRead
from zariya.services import documents, loans, repayments

router = APIRouter(prefix="/repayments", tags=["repayments"])


@router.get("/{repayment_id}", response_model=RepaymentRead)
async def get_repayment(repayment_id: UUID, db: AsyncSession = Depends(deps.get_db_session)) -> RepaymentRead:
    repayment = await repayments.get_repayment(db, repayment_id)
    return RepaymentRead.model_validate(repayment)


@router.get("/{repayment_id}/receipt")
async def get_repayment_receipt(repayment_id: UUID, db: AsyncSession = Depends(deps.get_db_session)) -> dict:
    repayment = await repayments.get_repayment(db, repayment_id)
    return {"receipt_ref": repayment.receipt_ref, "url": documents.resolve_document(repayment.receipt_ref)}


@router.post("/receipts", status_code=status.HTTP_201_CREATED)
async def upload_receipt(
    loan: str = Form(..., description="Loan UUID or account number"),
    file: UploadFile = File(...),
    db: AsyncSession = Depends(deps.get_db_session),
) -> dict:
    """Store a receipt image; pass the returned reference as ``receipt_ref`` when posting."""
    target = await loans.resolve_loan(db, loan)
    try:
        reference = await documents.store_document(file, owner=target.loan_account_number, slot="receipts")
    except documents.DocumentRejected as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return {"receipt_ref": reference, "url": documents.resolve_document(reference)}
