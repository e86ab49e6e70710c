"""Golden-set evaluation routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query

from ..core.auth import OperatorTokenPayload, require_role
from ..evaluation.schemas import GoldenSetRun, GoldenSetRunRequest, GoldenSetSummary
from ..services import Services, get_services

router = APIRouter(prefix="/api/admin/golden-set", tags=["evaluation"])


@router.post("/run", response_model=GoldenSetRun)
async def run_golden_set(
    body: GoldenSetRunRequest,
    _: OperatorTokenPayload = Depends(require_role("admin")),
    services: Services = Depends(get_services),
) -> GoldenSetRun:
    """Replay the golden set (request items or the configured file)."""
    try:
        return await services.golden_set.run(body.items, village_id=body.village_id)
    except FileNotFoundError as exc:
        raise HTTPException(status_code=404, detail=f"Golden set not found: {exc.filename}") from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@router.get("/history", response_model=list[GoldenSetRun])
def golden_set_history(
    limit: int = Query(default=10, ge=1, le=100),
    _: OperatorTokenPayload = Depends(require_role("viewer")),
    services: Services = Depends(get_services),
) -> list[GoldenSetRun]:
    return list(services.golden_set.summary().history[:limit])


@router.get("/summary", response_model=GoldenSetSummary)
def golden_set_summary(
    _: OperatorTokenPayload = Depends(require_role("viewer")),
    services: Services = Depends(get_services),
) -> GoldenSetSummary:
    return services.golden_set.summary()
