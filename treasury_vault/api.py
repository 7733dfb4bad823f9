"""FastAPI router exposing the treasury surface.

Every mutating endpoint acts as the bearer principal; the vault's own role
table decides what that principal may do. Deposits are open to anyone while
the treasury is running.
"""
from __future__ import annotations

import os
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, FastAPI, status
from prometheus_client import make_asgi_app
from pydantic import BaseModel, Field

from common.access import Role
from common.auth import current_principal
from common.http import install_error_handlers
from common.logging import configure_logging

from .models import RebalanceRecord
from .policy import policy_from_config
from .vault import TreasuryVault

TREASURY_GOVERNOR = os.getenv("TREASURY_GOVERNOR", "governor")
TREASURY_SCOPE_ID = int(os.getenv("TREASURY_SCOPE_ID", "0"))
REBALANCE_TOLERANCE_BPS = int(os.getenv("REBALANCE_TOLERANCE_BPS", "0"))

_vault: Optional[TreasuryVault] = None


def get_vault() -> TreasuryVault:
    """Process-wide vault; tests override this dependency."""
    global _vault
    if _vault is None:
        _vault = TreasuryVault(
            TREASURY_GOVERNOR,
            scope_id=TREASURY_SCOPE_ID,
            policy=policy_from_config({"tolerance_bps": REBALANCE_TOLERANCE_BPS}),
        )
    return _vault


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------


class AssetRequest(BaseModel):
    asset_id: str = Field(..., min_length=1)
    token_ref: str = Field(..., min_length=1)
    target_bps: int
    min_funding_amount: Decimal = Decimal(0)
    price: Optional[int] = None


class AllocationRequest(BaseModel):
    target_bps: int


class DepositRequest(BaseModel):
    amount: Decimal


class PriceRequest(BaseModel):
    price: int


class LinkFeedRequest(BaseModel):
    feed_id: str = Field(..., min_length=1)


class AllocationResponse(BaseModel):
    asset_id: str
    token_ref: str
    balance: Decimal
    target_bps: int
    current_bps: int


class RebalanceRequest(BaseModel):
    feed_id: str
    trigger_price: int
    change_bps: int = Field(..., ge=0)


class TradeModel(BaseModel):
    from_asset: str
    to_asset: str
    amount: Decimal


class RebalanceResponse(BaseModel):
    sequence: int
    feed_id: str
    trigger_price: int
    change_bps: int
    timestamp: int
    trades: List[TradeModel] = Field(default_factory=list)

    @classmethod
    def from_record(cls, rec: RebalanceRecord) -> "RebalanceResponse":
        return cls(
            sequence=rec.sequence,
            feed_id=rec.feed_id,
            trigger_price=rec.trigger_price,
            change_bps=rec.change_bps,
            timestamp=rec.timestamp,
            trades=[TradeModel(from_asset=t.from_asset, to_asset=t.to_asset, amount=t.amount) for t in rec.trades],
        )


class RoleRequest(BaseModel):
    principal: str = Field(..., min_length=1)


class PortfolioResponse(BaseModel):
    total_value: Decimal
    last_rebalance_at: int
    rebalance_count: int
    paused: bool
    assets: List[AllocationResponse] = Field(default_factory=list)


class PauseResponse(BaseModel):
    paused: bool


# ---------------------------------------------------------------------------
# Router definition
# ---------------------------------------------------------------------------

router = APIRouter(prefix="/treasury", tags=["treasury"])


def _allocation(vault: TreasuryVault, asset_id: str) -> AllocationResponse:
    alloc = vault.get_asset_allocation(asset_id)
    return AllocationResponse(
        asset_id=asset_id,
        token_ref=alloc.token_ref,
        balance=alloc.balance,
        target_bps=alloc.target_bps,
        current_bps=alloc.current_bps,
    )


@router.post("/assets", response_model=AllocationResponse, status_code=status.HTTP_201_CREATED)
def add_asset(
    req: AssetRequest,
    principal: str = Depends(current_principal),
    vault: TreasuryVault = Depends(get_vault),
):
    vault.add_asset(
        principal, req.asset_id, req.token_ref, req.target_bps, req.min_funding_amount, req.price
    )
    return _allocation(vault, req.asset_id)


@router.get("/assets/{asset_id}", response_model=AllocationResponse)
def get_asset(asset_id: str, vault: TreasuryVault = Depends(get_vault)):
    return _allocation(vault, asset_id)


@router.put("/assets/{asset_id}/allocation", response_model=AllocationResponse)
def update_allocation(
    asset_id: str,
    req: AllocationRequest,
    principal: str = Depends(current_principal),
    vault: TreasuryVault = Depends(get_vault),
):
    vault.update_allocation(principal, asset_id, req.target_bps)
    return _allocation(vault, asset_id)


@router.put("/assets/{asset_id}/price", response_model=AllocationResponse)
def set_asset_price(
    asset_id: str,
    req: PriceRequest,
    principal: str = Depends(current_principal),
    vault: TreasuryVault = Depends(get_vault),
):
    vault.set_asset_price(principal, asset_id, req.price)
    return _allocation(vault, asset_id)


@router.post("/assets/{asset_id}/feed", status_code=status.HTTP_204_NO_CONTENT)
def link_feed(
    asset_id: str,
    req: LinkFeedRequest,
    principal: str = Depends(current_principal),
    vault: TreasuryVault = Depends(get_vault),
):
    vault.link_feed(principal, req.feed_id, asset_id)


@router.post("/assets/{asset_id}/deposit", response_model=AllocationResponse)
def deposit(asset_id: str, req: DepositRequest, vault: TreasuryVault = Depends(get_vault)):
    vault.deposit(asset_id, req.amount)
    return _allocation(vault, asset_id)


@router.post("/rebalance", response_model=RebalanceResponse)
def execute_rebalance(
    req: RebalanceRequest,
    principal: str = Depends(current_principal),
    vault: TreasuryVault = Depends(get_vault),
):
    rec = vault.execute_rebalance(principal, req.feed_id, req.trigger_price, req.change_bps)
    return RebalanceResponse.from_record(rec)


@router.post("/pause", response_model=PauseResponse)
def pause(principal: str = Depends(current_principal), vault: TreasuryVault = Depends(get_vault)):
    vault.pause(principal)
    return PauseResponse(paused=vault.is_paused())


@router.post("/unpause", response_model=PauseResponse)
def unpause(principal: str = Depends(current_principal), vault: TreasuryVault = Depends(get_vault)):
    vault.unpause(principal)
    return PauseResponse(paused=vault.is_paused())


@router.post("/roles/reactive", status_code=status.HTTP_204_NO_CONTENT)
def grant_reactive(
    req: RoleRequest,
    principal: str = Depends(current_principal),
    vault: TreasuryVault = Depends(get_vault),
):
    vault.grant_reactive_trigger(principal, req.principal)


@router.post("/roles/{role}", status_code=status.HTTP_204_NO_CONTENT)
def grant_role(
    role: Role,
    req: RoleRequest,
    principal: str = Depends(current_principal),
    vault: TreasuryVault = Depends(get_vault),
):
    vault.grant_role(principal, req.principal, role)


@router.delete("/roles/{role}/{grantee}", status_code=status.HTTP_204_NO_CONTENT)
def revoke_role(
    role: Role,
    grantee: str,
    principal: str = Depends(current_principal),
    vault: TreasuryVault = Depends(get_vault),
):
    vault.revoke_role(principal, grantee, role)


@router.get("/portfolio", response_model=PortfolioResponse)
def portfolio(vault: TreasuryVault = Depends(get_vault)):
    state = vault.get_portfolio_state()
    return PortfolioResponse(
        total_value=state.total_value,
        last_rebalance_at=state.last_rebalance_at,
        rebalance_count=state.rebalance_count,
        paused=vault.is_paused(),
        assets=[_allocation(vault, asset_id) for asset_id in vault.asset_ids()],
    )


@router.get("/history", response_model=List[RebalanceResponse])
def history(vault: TreasuryVault = Depends(get_vault)):
    return [RebalanceResponse.from_record(rec) for rec in vault.history()]


def create_app() -> FastAPI:
    """Factory used by tests and the ASGI entrypoint."""
    configure_logging(os.getenv("LOG_FORMAT", "json"), service_name="treasury_vault")
    app = FastAPI(title="Treasury Vault Service")
    install_error_handlers(app)
    app.include_router(router)
    app.mount("/metrics", make_asgi_app())
    return app


__all__ = [
    "router",
    "create_app",
    "get_vault",
]
