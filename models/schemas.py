#Description: Pydantic schemas for fused signals, execution classes and prices for cross-layer transport.

from enum import Enum
from typing import Any, Literal, Optional
from datetime import datetime

import pandas as pd
from pydantic import BaseModel, ConfigDict, Field, field_validator

FusionStatus = Literal["ok", "no_signals", "failed"]

class SignalDetail(BaseModel):
    signal_id: str
    signal_type: str
    source: str
    raw_strength: float
    normalized_strength: float
    applied_weight: float
    contribution: float
    timestamp: datetime

class FusedSignalResult(BaseModel):
    fused_score: float = 0.0  # -100 .. +100
    details: list[SignalDetail] = Field(default_factory=list)
    total_signals: int = 0
    enabled_signals: int = 0
    status: FusionStatus = "ok"
    error: Optional[str] = None

    @classmethod
    def zero(cls, status: FusionStatus, error: str | None = None) -> "FusedSignalResult":
        return cls(fused_score=0.0, details=[], total_signals=0, enabled_signals=0, status=status, error=error)

    @property
    def failed(self) -> bool:
        return self.status == "failed"

    def to_frame(self) -> pd.DataFrame:
        if not self.details:
            return pd.DataFrame(columns=list(SignalDetail.model_fields))
        return pd.DataFrame([d.model_dump() for d in self.details])

class TopSignal(BaseModel):
    type: str
    contribution: float

class FusedSignalSummary(BaseModel):
    score: float
    total_signals: int
    enabled_signals: int
    top_signals: list[TopSignal] = Field(default_factory=list)

class ExecutionAuthority(str, Enum):
    USER = "USER"
    SYSTEM = "SYSTEM"

class ExecutionIntent(str, Enum):
    MANUAL = "MANUAL"
    AUTOMATED = "AUTOMATED"

class ExecutionTarget(str, Enum):
    MOCK = "MOCK"
    REAL = "REAL"

class IntentMetadata(BaseModel):
    model_config = ConfigDict(extra="allow")

    system_operator_mode: Optional[bool] = None
    force: Optional[bool] = None
    execution_wallet_id: Optional[str] = None
    is_test_mode: Optional[bool] = None

    @field_validator("system_operator_mode", "force", "is_test_mode", mode="before")
    @classmethod
    def _strict_flag(cls, v: Any):
        # only a literal boolean counts as a flag
        return v if isinstance(v, bool) else None

    @field_validator("execution_wallet_id", mode="before")
    @classmethod
    def _wallet_id(cls, v: Any):
        if v is None or v == "":
            return None
        return str(v)

class ExecutionClassInput(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    source: str = "automated"
    metadata: IntentMetadata = Field(default_factory=IntentMetadata)
    # trade intents carry the strategy target in camelCase
    strategy_execution_target: str = Field(default="MOCK", alias="strategyExecutionTarget")

    @field_validator("source", mode="before")
    @classmethod
    def _default_source(cls, v: Any):
        return v or "automated"

    @field_validator("metadata", mode="before")
    @classmethod
    def _default_metadata(cls, v: Any):
        return {} if v is None else v

    @field_validator("strategy_execution_target", mode="before")
    @classmethod
    def _default_target(cls, v: Any):
        return v or "MOCK"

class ExecutionDerivation(BaseModel):
    model_config = ConfigDict(frozen=True)

    source: str
    system_operator_mode: bool
    force: bool
    has_execution_wallet_id: bool
    strategy_execution_target: str

class ExecutionClass(BaseModel):
    model_config = ConfigDict(frozen=True)

    authority: ExecutionAuthority
    intent: ExecutionIntent
    target: ExecutionTarget
    derived_from: ExecutionDerivation

    @property
    def is_system_operator(self) -> bool:
        return self.authority is ExecutionAuthority.SYSTEM

    @property
    def is_mock_execution(self) -> bool:
        return self.target is ExecutionTarget.MOCK

    @property
    def is_manual_trade(self) -> bool:
        return self.intent is ExecutionIntent.MANUAL

class PriceData(BaseModel):
    price: float
    ts: str

class SnapshotFailure(BaseModel):
    symbol: str
    reason: str

class SnapshotRefreshReport(BaseModel):
    success: bool
    refreshed: int = 0
    failed: int = 0
    symbols_refreshed: list[str] = Field(default_factory=list)
    symbols_failed: list[SnapshotFailure] = Field(default_factory=list)
    elapsed_ms: int = 0
    timestamp: str
    error: Optional[str] = None
