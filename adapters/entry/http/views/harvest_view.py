from fastapi import APIRouter, Depends, HTTPException
from pydantic import ValidationError

from adapters.entry.http.dtos.harvest_dtos import BurnPositionRequest, HarvestRunRequest, HarvestRunResponse
from core.services.exceptions import (
    OwnershipError,
    PreconditionError,
    TransactionRevertedError,
)
from core.use_cases.burn_position_usecase import BurnPositionUseCase
from core.use_cases.harvest_pipeline_usecase import HarvestOrchestrator

router = APIRouter(tags=["harvest"])


def get_orchestrator() -> HarvestOrchestrator:
    return HarvestOrchestrator.from_settings()


def get_burn_use_case() -> BurnPositionUseCase:
    return BurnPositionUseCase.from_settings()


def _config_or_400(body: HarvestRunRequest):
    try:
        return body.to_config()
    except ValidationError as exc:
        detail = exc.errors(include_url=False, include_context=False, include_input=False)
        raise HTTPException(status_code=400, detail=detail) from exc


# Sync handlers: the pipeline blocks on receipts, FastAPI runs these in its threadpool.

@router.post(
    "/harvest/run",
    response_model=HarvestRunResponse,
    summary="Run the claim -> collect -> compound/harvest pipeline once",
)
def harvest_run(
    body: HarvestRunRequest,
    orchestrator: HarvestOrchestrator = Depends(get_orchestrator),
):
    config = _config_or_400(body)
    try:
        result = orchestrator.run(config)
    except OwnershipError as exc:
        raise HTTPException(status_code=403, detail=str(exc)) from exc
    except PreconditionError as exc:
        raise HTTPException(status_code=503 if exc.retryable else 400, detail=str(exc)) from exc
    except Exception as exc:
        raise HTTPException(status_code=500, detail=f"Failed to run harvest: {exc}") from exc

    return HarvestRunResponse.from_result(result.as_dict())


@router.post(
    "/harvest/preview",
    response_model=HarvestRunResponse,
    summary="Dry run of the pipeline: reads only, no transaction is sent",
)
def harvest_preview(
    body: HarvestRunRequest,
    orchestrator: HarvestOrchestrator = Depends(get_orchestrator),
):
    config = _config_or_400(body)
    try:
        result = orchestrator.preview(config)
    except OwnershipError as exc:
        raise HTTPException(status_code=403, detail=str(exc)) from exc
    except PreconditionError as exc:
        raise HTTPException(status_code=503 if exc.retryable else 400, detail=str(exc)) from exc
    except Exception as exc:
        raise HTTPException(status_code=500, detail=f"Failed to preview harvest: {exc}") from exc

    return HarvestRunResponse.from_result(result.as_dict())


@router.post(
    "/positions/{position_id}/burn",
    summary="Burn a v4 position (BURN_POSITION + TAKE_PAIR)",
)
def burn_position(
    position_id: int,
    body: BurnPositionRequest,
    use_case: BurnPositionUseCase = Depends(get_burn_use_case),
):
    try:
        return use_case.burn(position_id, dry_run=body.dry_run)
    except OwnershipError as exc:
        raise HTTPException(status_code=403, detail=str(exc)) from exc
    except PreconditionError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except TransactionRevertedError as exc:
        raise HTTPException(
            status_code=500,
            detail={
                "error": "reverted_on_chain",
                "tx": exc.tx_hash,
                "receipt": exc.receipt,
                "hint": "Possibly require() failed or out-of-gas.",
            },
        ) from exc
    except Exception as exc:
        raise HTTPException(status_code=500, detail=f"Failed to burn position: {exc}") from exc
