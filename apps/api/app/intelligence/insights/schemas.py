from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, IntEnum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class Severity(IntEnum):
    LOW = 1
    MEDIUM = 2
    HIGH = 3
    CRITICAL = 4

    @classmethod
    def parse(cls, value: str) -> Severity:
        return cls[value]


class InsightKind(str, Enum):
    DEAL_STALL = "DEAL_STALL"
    CASHFLOW_ALERT = "CASHFLOW_ALERT"
    OPS_RISK = "OPS_RISK"
    SHIELD_RISK = "SHIELD_RISK"
    HEALTH_DROP = "HEALTH_DROP"


@dataclass(frozen=True, slots=True)
class StalledDeal:
    id: str
    name: str
    days_idle: int
    value: int


@dataclass(frozen=True, slots=True)
class OverdueInvoice:
    id: str
    invoice_number: str | None
    days_overdue: int
    amount: float


@dataclass(frozen=True, slots=True)
class AssigneeLoad:
    user_id: str
    count: int


@dataclass(frozen=True, slots=True)
class CriticalEvent:
    id: str
    type: str
    created_at: str


@dataclass(frozen=True, slots=True)
class StalledDealMetrics:
    count: int = 0
    window_days: int = 14
    top_deals: tuple[StalledDeal, ...] = ()


@dataclass(frozen=True, slots=True)
class CashflowMetrics:
    count: int = 0
    window_days: int = 7
    amount: float = 0.0
    top_invoices: tuple[OverdueInvoice, ...] = ()


@dataclass(frozen=True, slots=True)
class OpsMetrics:
    count: int = 0
    by_assignee: tuple[AssigneeLoad, ...] = ()


@dataclass(frozen=True, slots=True)
class ShieldMetrics:
    count: int = 0
    recent: tuple[CriticalEvent, ...] = ()


@dataclass(frozen=True, slots=True)
class HealthTrend:
    has_data: bool = False
    previous_score: int = 0
    latest_score: int = 0

    @property
    def delta(self) -> int:
        return self.latest_score - self.previous_score


@dataclass(frozen=True, slots=True)
class MetricSnapshot:
    tenant_id: str
    now: datetime
    stalled_deals: StalledDealMetrics = field(default_factory=StalledDealMetrics)
    cashflow: CashflowMetrics = field(default_factory=CashflowMetrics)
    ops: OpsMetrics = field(default_factory=OpsMetrics)
    shield: ShieldMetrics = field(default_factory=ShieldMetrics)
    health: HealthTrend = field(default_factory=HealthTrend)


@dataclass(frozen=True, slots=True)
class InsightCandidate:
    kind: InsightKind
    severity: Severity
    score_impact: int
    title: str
    explanation: str
    subject_type: str | None = None
    subject_id: str | None = None
    meta: dict[str, Any] = field(default_factory=dict)


class InsightSummary(BaseModel):
    total: int = 0
    critical: int = 0
    high: int = 0
    medium: int = 0
    low: int = 0


class InsightCycleResult(BaseModel):
    created_count: int
    resolved_count: int
    summary: InsightSummary


class InsightRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tenant_id: str
    kind: str
    severity: str
    score_impact: int
    title: str
    explanation: str
    subject_type: str | None
    subject_id: str | None
    meta: dict[str, Any] | None = Field(default=None)
    is_resolved: bool
    created_at: datetime
    resolved_at: datetime | None


class ResolveInsightResponse(BaseModel):
    success: bool = True
