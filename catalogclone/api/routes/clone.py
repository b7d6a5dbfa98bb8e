from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status

from catalogclone.accounts.service import AccountConflictError, AccountNotFoundError
from catalogclone.api.schemas.clone import (
    CloneAccountRequest,
    CloneAccountResponse,
    CopyProductsRequest,
    CopyProductsResponse,
)
from catalogclone.clone.copier import NoProductsToCopyError, ProductCopier, ProductSelectionError
from catalogclone.clone.orchestrator import CloneOrchestrator, CloneValidationError
from catalogclone.worker.pipeline import get_clone_runtime

router = APIRouter(prefix="/accounts", tags=["clone"])


def get_clone_orchestrator() -> CloneOrchestrator:
    return get_clone_runtime().orchestrator


def get_product_copier() -> ProductCopier:
    return get_clone_runtime().copier


@router.post(
    "/{source_account_id}/clone",
    response_model=CloneAccountResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
def clone_account(
    source_account_id: str,
    request: CloneAccountRequest,
    orchestrator: CloneOrchestrator = Depends(get_clone_orchestrator),
) -> CloneAccountResponse:
    try:
        result = orchestrator.clone(source_account_id, request.model_dump())
    except AccountNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except AccountConflictError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except CloneValidationError as exc:
        detail = [{"loc": list(error.get("loc", ())), "msg": error.get("msg", "")} for error in exc.errors]
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=detail or str(exc)) from exc
    return CloneAccountResponse(
        new_account_id=result.new_account_id,
        job_id=result.job_id,
        total_items=result.total_items,
    )


@router.post("/{source_account_id}/copy-products", response_model=CopyProductsResponse)
def copy_products(
    source_account_id: str,
    request: CopyProductsRequest,
    copier: ProductCopier = Depends(get_product_copier),
) -> CopyProductsResponse:
    try:
        stats = copier.copy_products(source_account_id, request.target_account_id, request.product_ids)
    except (AccountNotFoundError, NoProductsToCopyError) as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except ProductSelectionError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    return CopyProductsResponse(
        copied_products=stats.copied_products,
        copied_images=stats.copied_images,
        copied_price_tiers=stats.copied_price_tiers,
        copied_categories=stats.copied_categories,
    )
