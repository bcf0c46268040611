"""Pydantic schemas for API request validation."""

from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from portfolio_analytics.config import Defaults


SIZE_HELP = "Fraction up to 1 (0.3, 1 = 100%) or percent above 1 (30)"


def _fraction(value: Optional[float]) -> Optional[float]:
    """Accept 30 or 0.30 for a percentage field.

    Values up to 1.0 are fractions, so 1 means 100%, not 1%.  Pass 0.01 for 1%.
    """
    if value is not None and value > 1.0:
        return value / 100.0
    return value


class HoldingIn(BaseModel):
    symbol: str = Field(..., min_length=1, examples=["AAPL"])
    quantity: float = Field(..., ge=0.0, description="Shares held")
    sector: str = "Unknown"
    cost_basis: float = 0.0


class EstimationConfig(BaseModel):
    method: Literal["historical_mean", "exponential_weighted", "shrinkage"] = "historical_mean"
    lookback_days: int = Field(default=Defaults.LOOKBACK_DAYS, gt=0, description="Trading days")
    return_type: Literal["log", "simple"] = "log"


class ConstraintsIn(BaseModel):
    """Optimizer constraints.

    Sizes and sector limits accept fractions (0.3) or percents (30).  Anything
    at or below 1 is read as a fraction: 1 means 100%.
    """

    min_position_size: float = Field(default=0.0, ge=0.0, description=SIZE_HELP)
    sector_limits: Dict[str, float] = Field(default_factory=dict, description=SIZE_HELP)
    allow_short_selling: bool = False
    max_short_position: Optional[float] = Field(default=None, ge=0.0, description=SIZE_HELP)
    target_return: Optional[float] = None
    target_volatility: Optional[float] = Field(default=None, gt=0.0)

    @field_validator("min_position_size", "max_short_position")
    @classmethod
    def normalize_sizes(cls, v: Optional[float]) -> Optional[float]:
        return _fraction(v)

    @field_validator("sector_limits")
    @classmethod
    def check_sector_limits(cls, v: Dict[str, float]) -> Dict[str, float]:
        if any(limit < 0 for limit in v.values()):
            raise ValueError("sector limits must be >= 0")
        return {k: _fraction(limit) for k, limit in v.items()}


class ViewIn(BaseModel):
    assets: Dict[str, float] = Field(..., min_length=1, examples=[{"AAPL": 1.0}])
    expected_return: float = Field(..., description="Annual return implied by the view")
    confidence: float = Field(default=0.5, gt=0.0, le=1.0)


class PortfolioRequest(BaseModel):
    """Holdings plus the price history needed to estimate them.

    ``prices`` maps symbol -> {ISO date: close}; dates must be increasing.
    """

    portfolio_id: str = "default"
    holdings: List[HoldingIn] = Field(..., min_length=1)
    prices: Dict[str, Dict[str, float]]
    estimation: EstimationConfig = Field(default_factory=EstimationConfig)
    risk_free_rate: Optional[float] = None

    @model_validator(mode="after")
    def check_symbols(self):
        held = [h.symbol for h in self.holdings]
        if len(set(held)) != len(held):
            raise ValueError("duplicate symbols in holdings")
        unknown = set(self.prices) - set(held)
        if unknown:
            raise ValueError(f"prices reference symbols not in holdings: {sorted(unknown)}")
        missing = set(held) - set(self.prices)
        if missing:
            raise ValueError(f"no price history for holdings: {sorted(missing)}")
        return self

    @property
    def symbols(self) -> List[str]:
        return [h.symbol for h in self.holdings]

    @property
    def sectors(self) -> Dict[str, str]:
        return {h.symbol: h.sector for h in self.holdings}


class RiskRequest(PortfolioRequest):
    weights: Optional[Dict[str, float]] = Field(
        default=None, description="Defaults to current market-value weights",
    )
    confidence_level: float = Field(default=95.0, gt=0.0, lt=100.0, description="90, 95, 99 or a fraction")
    time_horizon_days: int = Field(default=1, gt=0)
    mode: Literal["parametric", "historical"] = "parametric"
    benchmark: Optional[Dict[str, float]] = Field(default=None, description="{ISO date: close}")

    @model_validator(mode="after")
    def check_weights(self):
        if self.weights is None:
            return self
        unknown = set(self.weights) - set(self.symbols)
        if unknown:
            raise ValueError(f"weights reference symbols not in holdings: {sorted(unknown)}")
        total = sum(self.weights.values())
        if abs(total - 1.0) > Defaults.WEIGHT_TOLERANCE:
            raise ValueError(f"weights must sum to 1 (got {total:.8f})")
        return self


class ConstrainedRequest(PortfolioRequest):
    max_position_size: float = Field(default=1.0, gt=0.0, description=SIZE_HELP)
    constraints: ConstraintsIn = Field(default_factory=ConstraintsIn)

    @field_validator("max_position_size")
    @classmethod
    def normalize_max_position(cls, v: float) -> float:
        return _fraction(v)


class OptimizeRequest(ConstrainedRequest):
    method: str = Field(default="max-sharpe", examples=["mean-variance", "risk-parity", "cvar-min"])
    risk_tolerance: Optional[float] = Field(default=None, ge=0.0, le=100.0)
    max_position_size: float = Field(default=0.30, gt=0.0, description=SIZE_HELP)
    views: List[ViewIn] = Field(default_factory=list)
    risk_budgets: Optional[Dict[str, float]] = None
    confidence_level: float = Field(default=95.0, gt=0.0, lt=100.0)


class FrontierRequest(ConstrainedRequest):
    num_points: int = Field(default=Defaults.FRONTIER_POINTS, ge=2, le=200)


class RandomPortfoliosRequest(ConstrainedRequest):
    num_portfolios: int = Field(default=Defaults.RANDOM_PORTFOLIOS, gt=0, le=20000)
    seed: Optional[int] = None
