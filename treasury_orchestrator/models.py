"""Data models for the Treasury Orchestrator system file."""

from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class FeedConfig(BaseModel):
    """One monitored oracle."""
    feed_id: str = Field(..., min_length=1)
    origin_ref: str = Field(..., min_length=1)
    origin_scope: int
    threshold_bps: int = Field(..., ge=0, le=10_000)


class AssetConfig(BaseModel):
    """Initial ledger entry for a treasury."""
    asset_id: str = Field(..., min_length=1)
    token_ref: str = Field(..., min_length=1)
    target_bps: int = Field(..., ge=0, le=10_000)
    balance: Decimal = Decimal(0)
    min_funding_amount: Decimal = Decimal(0)
    price: Optional[int] = Field(None, gt=0)
    linked_feed: Optional[str] = None


class TreasuryConfig(BaseModel):
    """A destination treasury and its starting portfolio."""
    scope_id: int
    address: str = Field(..., min_length=1)
    resource_budget: int = Field(..., gt=0)
    governor: str = "governor"
    emergency: List[str] = Field(default_factory=list)
    active: bool = True
    cooldown_seconds: Optional[float] = Field(None, gt=0)
    tolerance_bps: int = Field(0, ge=0, le=10_000)
    assets: List[AssetConfig] = Field(default_factory=list)


class SystemConfig(BaseModel):
    """Whole topology: one monitor, N treasuries."""
    model_config = ConfigDict(extra="forbid")

    owner: str = "owner"
    monitor_principal: Optional[str] = None
    feeds: List[FeedConfig] = Field(default_factory=list)
    treasuries: List[TreasuryConfig] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_links(self) -> "SystemConfig":
        feed_ids = {f.feed_id for f in self.feeds}
        for treasury in self.treasuries:
            for asset in treasury.assets:
                if asset.linked_feed and asset.linked_feed not in feed_ids:
                    raise ValueError(
                        f"asset {asset.asset_id} links unknown feed {asset.linked_feed}"
                    )
        return self
