from __future__ import annotations

from datetime import datetime, timezone

import pytest

from app.intelligence.insights.schemas import (
    AssigneeLoad,
    CashflowMetrics,
    HealthTrend,
    InsightKind,
    MetricSnapshot,
    OpsMetrics,
    OverdueInvoice,
    Severity,
    ShieldMetrics,
    StalledDeal,
    StalledDealMetrics,
)
from app.intelligence.insights.synthesizer import (
    cashflow_score,
    cashflow_severity,
    deal_stall_severity,
    health_drop_severity,
    ops_severity,
    round_half_up,
    synthesize,
)

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _snapshot(**kwargs) -> MetricSnapshot:  # type: ignore[no-untyped-def]
    return MetricSnapshot(tenant_id="tenant-a", now=NOW, **kwargs)


def test_empty_snapshot_produces_no_candidates() -> None:
    assert synthesize(_snapshot()) == []


def test_deal_stall_with_twelve_deals_is_critical() -> None:
    snapshot = _snapshot(
        stalled_deals=StalledDealMetrics(
            count=12,
            top_deals=(StalledDeal(id="deal-1", name="Acme renewal", days_idle=30, value=5000),),
        )
    )

    [candidate] = synthesize(snapshot)

    assert candidate.kind == InsightKind.DEAL_STALL
    assert candidate.severity == Severity.CRITICAL
    assert candidate.score_impact == 40
    assert candidate.title == "Deals stalling in pipeline"
    assert "idle for more than 14 days" in candidate.explanation
    assert candidate.subject_type == "DEAL"
    assert candidate.subject_id == "deal-1"
    assert candidate.meta["stalled_deals"] == 12
    assert candidate.meta["top_deals"][0]["name"] == "Acme renewal"


def test_deal_stall_explanation_uses_configured_window() -> None:
    [candidate] = synthesize(_snapshot(stalled_deals=StalledDealMetrics(count=1, window_days=21)))

    assert "idle for more than 21 days" in candidate.explanation
    assert candidate.subject_id is None
    assert candidate.severity == Severity.LOW
    assert candidate.score_impact == 13


@pytest.mark.parametrize(
    ("count", "expected"),
    [(1, Severity.LOW), (2, Severity.MEDIUM), (5, Severity.HIGH), (9, Severity.HIGH), (10, Severity.CRITICAL)],
)
def test_deal_stall_severity_bands(count: int, expected: Severity) -> None:
    assert deal_stall_severity(count) == expected


def test_severity_never_decreases_as_counts_grow() -> None:
    for rule in (deal_stall_severity, ops_severity):
        previous = Severity.LOW
        for count in range(1, 60):
            current = rule(count)
            assert current >= previous
            previous = current

    previous = Severity.LOW
    for amount in range(0, 400_000, 5_000):
        current = cashflow_severity(1, float(amount))
        assert current >= previous
        previous = current


def test_cashflow_alert_rounds_amount_in_meta_and_explanation() -> None:
    snapshot = _snapshot(
        cashflow=CashflowMetrics(
            count=3,
            amount=50_000.4,
            top_invoices=(OverdueInvoice(id="inv-1", invoice_number="INV-001", days_overdue=12, amount=20_000.0),),
        )
    )

    [candidate] = synthesize(snapshot)

    assert candidate.kind == InsightKind.CASHFLOW_ALERT
    assert candidate.severity == Severity.MEDIUM
    assert candidate.score_impact == cashflow_score(3, 50_000.4) == 42
    assert candidate.meta["overdue_amount"] == 50_000
    assert "blocking 50000 in receivables" in candidate.explanation
    assert "overdue by more than 7 days" in candidate.explanation
    assert candidate.subject_id == "inv-1"


@pytest.mark.parametrize(("value", "expected"), [(0.5, 1), (1.5, 2), (2.5, 3), (2.4, 2), (99_999.5, 100_000)])
def test_round_half_up_sends_halves_upward(value: float, expected: int) -> None:
    assert round_half_up(value) == expected


def test_cashflow_alert_scores_the_rounded_amount() -> None:
    [candidate] = synthesize(_snapshot(cashflow=CashflowMetrics(count=1, amount=2.5)))

    assert candidate.meta["overdue_amount"] == 3
    assert "blocking 3 in receivables" in candidate.explanation
    # log10(3 + 1) * 10 rounds to 6; the raw 2.5 would give 5.
    assert candidate.score_impact == cashflow_score(1, 3) == 10


def test_cashflow_severity_uses_the_rounded_amount() -> None:
    [candidate] = synthesize(_snapshot(cashflow=CashflowMetrics(count=1, amount=99_999.5)))

    assert candidate.meta["overdue_amount"] == 100_000
    assert candidate.severity == Severity.HIGH


@pytest.mark.parametrize(
    ("count", "amount", "expected"),
    [
        (1, 1_000.0, Severity.LOW),
        (2, 1_000.0, Severity.MEDIUM),
        (1, 100_000.0, Severity.HIGH),
        (5, 10.0, Severity.HIGH),
        (1, 200_000.0, Severity.CRITICAL),
        (10, 10.0, Severity.CRITICAL),
    ],
)
def test_cashflow_severity_bands(count: int, amount: float, expected: Severity) -> None:
    assert cashflow_severity(count, amount) == expected


def test_ops_risk_carries_assignee_breakdown() -> None:
    snapshot = _snapshot(
        ops=OpsMetrics(count=16, by_assignee=(AssigneeLoad(user_id="u-1", count=9), AssigneeLoad(user_id="u-2", count=7)))
    )

    [candidate] = synthesize(snapshot)

    assert candidate.kind == InsightKind.OPS_RISK
    assert candidate.severity == Severity.HIGH
    assert candidate.score_impact == 42
    assert candidate.meta["by_assignee"] == [{"user_id": "u-1", "count": 9}, {"user_id": "u-2", "count": 7}]


def test_shield_risk_is_always_critical() -> None:
    [candidate] = synthesize(_snapshot(shield=ShieldMetrics(count=1)))

    assert candidate.kind == InsightKind.SHIELD_RISK
    assert candidate.severity == Severity.CRITICAL
    assert candidate.score_impact == 45


def test_health_drop_threshold_is_inclusive() -> None:
    at_threshold = synthesize(_snapshot(health=HealthTrend(has_data=True, previous_score=80, latest_score=70)))
    below_threshold = synthesize(_snapshot(health=HealthTrend(has_data=True, previous_score=80, latest_score=71)))

    assert [candidate.kind for candidate in at_threshold] == [InsightKind.HEALTH_DROP]
    assert at_threshold[0].severity == Severity.MEDIUM
    assert at_threshold[0].score_impact == 20
    assert at_threshold[0].meta == {"previous_score": 80, "latest_score": 70, "delta": -10}
    assert below_threshold == []


def test_health_drop_needs_two_snapshots() -> None:
    assert synthesize(_snapshot(health=HealthTrend(has_data=False, previous_score=90, latest_score=10))) == []


@pytest.mark.parametrize(
    ("delta", "expected"),
    [(-10, Severity.MEDIUM), (-15, Severity.HIGH), (-24, Severity.HIGH), (-25, Severity.CRITICAL), (-60, Severity.CRITICAL)],
)
def test_health_drop_severity_bands(delta: int, expected: Severity) -> None:
    assert health_drop_severity(delta) == expected


def test_all_rules_fire_together_in_fixed_order() -> None:
    snapshot = _snapshot(
        stalled_deals=StalledDealMetrics(count=2),
        cashflow=CashflowMetrics(count=1, amount=10.0),
        ops=OpsMetrics(count=1),
        shield=ShieldMetrics(count=2),
        health=HealthTrend(has_data=True, previous_score=60, latest_score=30),
    )

    kinds = [candidate.kind for candidate in synthesize(snapshot)]

    assert kinds == [
        InsightKind.DEAL_STALL,
        InsightKind.CASHFLOW_ALERT,
        InsightKind.OPS_RISK,
        InsightKind.SHIELD_RISK,
        InsightKind.HEALTH_DROP,
    ]
