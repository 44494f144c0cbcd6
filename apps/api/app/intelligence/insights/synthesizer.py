"""Deterministic threshold rules turning a metric snapshot into insight candidates."""

from __future__ import annotations

import math
from dataclasses import asdict

from app.intelligence.insights.schemas import InsightCandidate, InsightKind, MetricSnapshot, Severity


def deal_stall_severity(count: int) -> Severity:
    if count >= 10:
        return Severity.CRITICAL
    if count >= 5:
        return Severity.HIGH
    if count >= 2:
        return Severity.MEDIUM
    return Severity.LOW


def cashflow_severity(count: int, amount: float) -> Severity:
    if amount >= 200_000 or count >= 10:
        return Severity.CRITICAL
    if amount >= 100_000 or count >= 5:
        return Severity.HIGH
    if count >= 2:
        return Severity.MEDIUM
    return Severity.LOW


def ops_severity(count: int) -> Severity:
    if count >= 30:
        return Severity.CRITICAL
    if count >= 15:
        return Severity.HIGH
    if count >= 5:
        return Severity.MEDIUM
    return Severity.LOW


def health_drop_severity(delta: int) -> Severity:
    if delta <= -25:
        return Severity.CRITICAL
    if delta <= -15:
        return Severity.HIGH
    return Severity.MEDIUM


def deal_stall_score(count: int) -> int:
    return min(30, count * 3) + 10


def round_half_up(value: float) -> int:
    # Halves go up (2.5 -> 3); builtin round() sends them to the even neighbour.
    return math.floor(value + 0.5)


def cashflow_score(count: int, amount: float) -> int:
    return min(40, count * 4) + min(30, round_half_up(math.log10(amount + 1) * 10))


def ops_score(count: int) -> int:
    return min(35, count * 2) + 10


def shield_score(count: int) -> int:
    return 40 + min(20, count * 5)


def health_drop_score(delta: int) -> int:
    return min(30, abs(delta)) + 10


HEALTH_DROP_THRESHOLD = -10


def synthesize(snapshot: MetricSnapshot) -> list[InsightCandidate]:
    candidates: list[InsightCandidate] = []

    stalled = snapshot.stalled_deals
    if stalled.count > 0:
        candidates.append(
            InsightCandidate(
                kind=InsightKind.DEAL_STALL,
                severity=deal_stall_severity(stalled.count),
                score_impact=deal_stall_score(stalled.count),
                title="Deals stalling in pipeline",
                explanation=f"{stalled.count} open deals have been idle for more than {stalled.window_days} days.",
                subject_type="DEAL",
                subject_id=stalled.top_deals[0].id if stalled.top_deals else None,
                meta={"stalled_deals": stalled.count, "top_deals": [asdict(deal) for deal in stalled.top_deals]},
            )
        )

    cashflow = snapshot.cashflow
    if cashflow.count > 0:
        overdue_amount = round_half_up(cashflow.amount)
        candidates.append(
            InsightCandidate(
                kind=InsightKind.CASHFLOW_ALERT,
                severity=cashflow_severity(cashflow.count, overdue_amount),
                score_impact=cashflow_score(cashflow.count, overdue_amount),
                title="Cashflow risk: overdue invoices",
                explanation=(
                    f"{cashflow.count} invoices are overdue by more than {cashflow.window_days} days, blocking {overdue_amount} in receivables."
                ),
                subject_type="INVOICE",
                subject_id=cashflow.top_invoices[0].id if cashflow.top_invoices else None,
                meta={
                    "overdue_invoices": cashflow.count,
                    "overdue_amount": overdue_amount,
                    "top_invoices": [asdict(invoice) for invoice in cashflow.top_invoices],
                },
            )
        )

    ops = snapshot.ops
    if ops.count > 0:
        candidates.append(
            InsightCandidate(
                kind=InsightKind.OPS_RISK,
                severity=ops_severity(ops.count),
                score_impact=ops_score(ops.count),
                title="Ops risk: overdue execution load",
                explanation=f"{ops.count} open work items are overdue and need immediate intervention.",
                subject_type="WORK_ITEM",
                meta={"overdue_work": ops.count, "by_assignee": [asdict(load) for load in ops.by_assignee]},
            )
        )

    shield = snapshot.shield
    if shield.count > 0:
        # Security findings are never downgraded.
        candidates.append(
            InsightCandidate(
                kind=InsightKind.SHIELD_RISK,
                severity=Severity.CRITICAL,
                score_impact=shield_score(shield.count),
                title="Security risk: critical events",
                explanation=f"{shield.count} unresolved critical security events are active.",
                subject_type="SECURITY_EVENT",
                subject_id=shield.recent[0].id if shield.recent else None,
                meta={"critical_events": shield.count, "recent": [asdict(event) for event in shield.recent]},
            )
        )

    health = snapshot.health
    if health.has_data and health.delta <= HEALTH_DROP_THRESHOLD:
        candidates.append(
            InsightCandidate(
                kind=InsightKind.HEALTH_DROP,
                severity=health_drop_severity(health.delta),
                score_impact=health_drop_score(health.delta),
                title="Execution score dropped",
                explanation=(
                    f"Execution score dropped from {health.previous_score} to {health.latest_score} ({health.delta})."
                ),
                subject_type="ORG_HEALTH",
                meta={
                    "previous_score": health.previous_score,
                    "latest_score": health.latest_score,
                    "delta": health.delta,
                },
            )
        )

    return candidates
