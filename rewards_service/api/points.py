"""Points balance, earning, spending and discount conversion.

  GET  /v1/points                  balance, level, distance to next level
  POST /v1/points/award            credit an activity
  POST /v1/points/spend            debit points (409 if the balance is short)
  GET  /v1/points/history          ledger entries, newest first
  GET  /v1/points/discount         percent a balance is worth
  POST /v1/points/discount/apply   quote a discounted price

``/discount/apply`` only quotes.  The client then spends
``points_used`` through ``/spend``.
"""

from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict, Field

from rewards_service.api.dependencies import require_user
from rewards_service.models.points import PointsType
from rewards_service.models.principal import Principal
from rewards_service.services.engine import points_ledger
from rewards_service.services.points_ledger import (
    apply_discount,
    calculate_discount_percentage,
)

router = APIRouter(prefix="/v1/points", tags=["points"])


class UserPointsOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: str
    total_points: int
    lifetime_points: int
    level: int
    next_level_points: int


class BalanceOut(UserPointsOut):
    discount_percentage: int


class AwardIn(BaseModel):
    points_type: PointsType
    amount: int | None = Field(default=None, gt=0)
    metadata: dict[str, Any] = Field(default_factory=dict)


class SpendIn(BaseModel):
    amount: int = Field(gt=0)
    reason: str = Field(default="Course discount", max_length=255)


class LedgerOpOut(BaseModel):
    ok: bool
    balance: UserPointsOut | None


class TransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    points_type: PointsType
    amount: int
    timestamp: int
    reason: str | None
    metadata: dict[str, Any]


class DiscountPercentOut(BaseModel):
    total_points: int
    discount_percentage: int


class ApplyDiscountIn(BaseModel):
    original_price: float = Field(ge=0, allow_inf_nan=False)
    points_to_use: int = Field(ge=0)


class DiscountOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    original_price: float
    discount_amount: float
    final_price: float
    points_used: int
    discount_percentage: int


def _unavailable() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail="Points store unavailable",
    )


@router.get("", response_model=BalanceOut)
async def get_balance(
    principal: Annotated[Principal, Depends(require_user)],
) -> BalanceOut:
    points = await points_ledger.get_user_points(principal.user_id)
    if points is None:
        raise _unavailable()
    return BalanceOut(
        **UserPointsOut.model_validate(points).model_dump(),
        discount_percentage=calculate_discount_percentage(points.total_points),
    )


@router.post("/award", response_model=LedgerOpOut)
async def award_points(
    body: AwardIn,
    principal: Annotated[Principal, Depends(require_user)],
) -> LedgerOpOut:
    if body.points_type is PointsType.SPENT:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="SPENT is not an awardable activity",
        )
    ok = await points_ledger.award(
        principal.user_id, body.points_type, body.amount, body.metadata
    )
    if not ok:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Award declined",
        )
    balance = await points_ledger.get_user_points(principal.user_id)
    return LedgerOpOut(
        ok=True,
        balance=UserPointsOut.model_validate(balance) if balance else None,
    )


@router.post("/spend", response_model=LedgerOpOut)
async def spend_points(
    body: SpendIn,
    principal: Annotated[Principal, Depends(require_user)],
) -> LedgerOpOut:
    ok = await points_ledger.spend(principal.user_id, body.amount, body.reason)
    if not ok:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Insufficient points or ledger unavailable",
        )
    balance = await points_ledger.get_user_points(principal.user_id)
    return LedgerOpOut(
        ok=True,
        balance=UserPointsOut.model_validate(balance) if balance else None,
    )


@router.get("/history", response_model=list[TransactionOut])
async def get_history(
    principal: Annotated[Principal, Depends(require_user)],
    limit: Annotated[int, Query(ge=1, le=100)] = 20,
) -> list[TransactionOut]:
    history = await points_ledger.get_history(principal.user_id, limit)
    return [TransactionOut.model_validate(t) for t in history]


@router.get("/discount", response_model=DiscountPercentOut)
async def discount_for_points(
    total_points: Annotated[int, Query(ge=0)],
) -> DiscountPercentOut:
    return DiscountPercentOut(
        total_points=total_points,
        discount_percentage=calculate_discount_percentage(total_points),
    )


@router.post("/discount/apply", response_model=DiscountOut)
async def quote_discount(body: ApplyDiscountIn) -> DiscountOut:
    result = apply_discount(body.original_price, body.points_to_use)
    if result is None:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Price must be a finite non-negative number",
        )
    return DiscountOut.model_validate(result)
