from app.intelligence.insights.api import router
from app.intelligence.insights.models import AIInsight
from app.intelligence.insights.schemas import (
    InsightCandidate,
    InsightCycleResult,
    InsightKind,
    InsightRead,
    InsightSummary,
    MetricSnapshot,
    Severity,
)
from app.intelligence.insights.service import InsightService, insight_service

__all__ = [
    "router",
    "AIInsight",
    "InsightCandidate",
    "InsightCycleResult",
    "InsightKind",
    "InsightRead",
    "InsightSummary",
    "MetricSnapshot",
    "Severity",
    "InsightService",
    "insight_service",
]
