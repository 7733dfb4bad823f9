"""FastAPI router exposing the monitor surface.

Registration endpoints are evaluated against the bearer principal; ingestion
endpoints are open to the event relay (they only ever move feed state
forward). The module can be imported standalone for testing (``create_app``)
or its router included by an outer application.
"""
from __future__ import annotations

import os
from typing import List, Optional, Union

from fastapi import APIRouter, Depends, FastAPI, HTTPException, status
from prometheus_client import make_asgi_app
from pydantic import BaseModel, Field

from common.auth import current_principal
from common.datetime import to_epoch
from common.http import install_error_handlers
from common.logging import configure_logging

from .models import PriceFeed, TreasuryRef
from .monitor import ObservationResult, PriceMonitor

MONITOR_OWNER = os.getenv("MONITOR_OWNER", "owner")
MONITOR_PRINCIPAL = os.getenv("MONITOR_PRINCIPAL") or None

_monitor: Optional[PriceMonitor] = None


def get_monitor() -> PriceMonitor:
    """Process-wide monitor; tests override this dependency."""
    global _monitor
    if _monitor is None:
        _monitor = PriceMonitor(MONITOR_OWNER, principal=MONITOR_PRINCIPAL)
    return _monitor


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------


class FeedRequest(BaseModel):
    feed_id: str = Field(..., min_length=1)
    origin_ref: str = Field(..., min_length=1)
    origin_scope: int
    threshold_bps: int = Field(..., ge=0)


class FeedResponse(BaseModel):
    feed_id: str
    origin_ref: str
    origin_scope: int
    threshold_bps: int
    last_price: Optional[int] = None
    last_observed_at: int = 0
    last_block: Optional[int] = None
    observation_count: int = 0

    @classmethod
    def from_feed(cls, feed: PriceFeed) -> "FeedResponse":
        return cls(**feed.as_dict())


class TreasuryRequest(BaseModel):
    scope_id: int
    address: str = Field(..., min_length=1)
    resource_budget: int = Field(..., gt=0)


class TreasuryStatusRequest(BaseModel):
    active: bool


class TreasuryResponse(BaseModel):
    scope_id: int
    address: str
    resource_budget: int
    active: bool

    @classmethod
    def from_ref(cls, ref: TreasuryRef) -> "TreasuryResponse":
        return cls(**ref.as_dict())


class ObservationRequest(BaseModel):
    feed_id: str
    price: int
    observed_at: Union[int, str]
    block: Optional[int] = None


class ReactRequest(BaseModel):
    origin_scope: int
    origin_ref: str
    event_topic: str
    raw_payload: str
    observed_at_block: int


class DispatchModel(BaseModel):
    scope_id: int
    treasury_ref: str
    delivered: bool
    error: Optional[str] = None


class ObservationResponse(BaseModel):
    feed_id: str
    breached: bool
    old_price: Optional[int] = None
    new_price: int
    change_bps: int
    dispatched: List[DispatchModel] = Field(default_factory=list)

    @classmethod
    def from_result(cls, res: ObservationResult) -> "ObservationResponse":
        det = res.detection
        return cls(
            feed_id=res.feed_id,
            breached=det.breached,
            old_price=det.old_price,
            new_price=det.new_price,
            change_bps=det.change_bps,
            dispatched=[
                DispatchModel(
                    scope_id=o.scope_id,
                    treasury_ref=o.treasury_ref,
                    delivered=o.delivered,
                    error=o.error,
                )
                for o in res.dispatched
            ],
        )


class StatsResponse(BaseModel):
    feed_count: int
    treasury_count: int


# ---------------------------------------------------------------------------
# Router definition
# ---------------------------------------------------------------------------

router = APIRouter(prefix="/monitor", tags=["monitor"])


@router.post("/feeds", response_model=FeedResponse, status_code=status.HTTP_201_CREATED)
def register_feed(
    req: FeedRequest,
    principal: str = Depends(current_principal),
    monitor: PriceMonitor = Depends(get_monitor),
):
    feed = monitor.register_feed(
        principal, req.feed_id, req.origin_ref, req.origin_scope, req.threshold_bps
    )
    return FeedResponse.from_feed(feed)


@router.get("/feeds/{feed_id}", response_model=FeedResponse)
def get_feed(feed_id: str, monitor: PriceMonitor = Depends(get_monitor)):
    return FeedResponse.from_feed(monitor.get_feed(feed_id))


@router.post(
    "/treasuries", response_model=TreasuryResponse, status_code=status.HTTP_201_CREATED
)
def register_treasury(
    req: TreasuryRequest,
    principal: str = Depends(current_principal),
    monitor: PriceMonitor = Depends(get_monitor),
):
    ref = monitor.register_treasury(principal, req.scope_id, req.address, req.resource_budget)
    return TreasuryResponse.from_ref(ref)


@router.patch("/treasuries/{scope_id}", response_model=TreasuryResponse)
def set_treasury_status(
    scope_id: int,
    req: TreasuryStatusRequest,
    principal: str = Depends(current_principal),
    monitor: PriceMonitor = Depends(get_monitor),
):
    return TreasuryResponse.from_ref(monitor.set_treasury_active(principal, scope_id, req.active))


@router.post("/observations", response_model=ObservationResponse)
async def observe(req: ObservationRequest, monitor: PriceMonitor = Depends(get_monitor)):
    try:
        observed_at = to_epoch(req.observed_at)
    except (TypeError, ValueError):
        raise HTTPException(status_code=400, detail="invalid observed_at")
    res = await monitor.process_observation(req.feed_id, req.price, observed_at, req.block)
    return ObservationResponse.from_result(res)


@router.post("/react", response_model=ObservationResponse)
async def react(req: ReactRequest, monitor: PriceMonitor = Depends(get_monitor)):
    res = await monitor.react(
        req.origin_scope, req.origin_ref, req.event_topic, req.raw_payload, req.observed_at_block
    )
    return ObservationResponse.from_result(res)


@router.get("/stats", response_model=StatsResponse)
def stats(monitor: PriceMonitor = Depends(get_monitor)):
    return StatsResponse(feed_count=monitor.feed_count(), treasury_count=monitor.treasury_count())


def create_app() -> FastAPI:
    """Factory used by tests and the ASGI entrypoint."""
    configure_logging(os.getenv("LOG_FORMAT", "json"), service_name="price_monitor")
    app = FastAPI(title="Price Monitor Service")
    install_error_handlers(app)
    app.include_router(router)
    app.mount("/metrics", make_asgi_app())
    return app


__all__ = [
    "router",
    "create_app",
    "get_monitor",
]
