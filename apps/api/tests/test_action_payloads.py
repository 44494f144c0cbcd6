from __future__ import annotations

import uuid
from datetime import datetime, timezone

import pytest

from app.intelligence.actions.payloads import (
    CreateNudgePayload,
    InvoiceLockUndo,
    LockInvoicePayload,
    ReassignWorkPayload,
    WorkAssigneeUndo,
    dump_record,
    parse_payload,
    parse_undo,
)
from app.intelligence.errors import UnsupportedActionError, ValidationError


def test_parse_payload_attaches_kind_and_validates() -> None:
    invoice_id = uuid.uuid4()

    payload = parse_payload("LOCK_INVOICE", {"invoice_id": str(invoice_id)})

    assert isinstance(payload, LockInvoicePayload)
    assert payload.invoice_id == invoice_id


def test_stored_kind_wins_over_payload_contents() -> None:
    payload = parse_payload(
        "REASSIGN_WORK",
        {"kind": "LOCK_INVOICE", "work_item_id": str(uuid.uuid4()), "assignee_id": "user-9"},
    )

    assert isinstance(payload, ReassignWorkPayload)
    assert payload.assignee_id == "user-9"


def test_unknown_kind_is_unsupported() -> None:
    with pytest.raises(UnsupportedActionError) as exc_info:
        parse_payload("SEND_EMAIL", {})

    assert str(exc_info.value) == "Unsupported action type: SEND_EMAIL"
    assert exc_info.value.status_code == 400


def test_invalid_nudge_payload_reports_field_errors() -> None:
    with pytest.raises(ValidationError) as exc_info:
        parse_payload("CREATE_NUDGE", {"target_role": "JANITOR", "message": "", "entity_type": "DEAL", "entity_id": "x"})

    error = exc_info.value
    assert error.status_code == 422
    assert error.code == "validation_error"
    fields = {tuple(item["loc"])[-1] for item in error.details}
    assert {"target_role", "message"} <= fields


def test_non_object_payload_is_rejected() -> None:
    with pytest.raises(ValidationError):
        parse_payload("CREATE_WORK_ITEM", ["not", "a", "dict"])


def test_dump_record_is_json_ready_without_kind() -> None:
    nudge = CreateNudgePayload(target_role="OPS", message="Check workload", entity_type="WORK_ITEM", entity_id="insight-1")

    assert dump_record(nudge) == {
        "target_role": "OPS",
        "message": "Check workload",
        "link": None,
        "entity_type": "WORK_ITEM",
        "entity_id": "insight-1",
    }


def test_invoice_lock_undo_survives_storage() -> None:
    invoice_id = uuid.uuid4()
    locked_at = datetime(2026, 2, 1, 9, 30, tzinfo=timezone.utc)
    stored = dump_record(
        InvoiceLockUndo(invoice_id=invoice_id, previous_locked_at=locked_at, previous_locked_by_user_id="finance-1")
    )

    assert stored["invoice_id"] == str(invoice_id)
    restored = parse_undo("LOCK_INVOICE", stored)

    assert isinstance(restored, InvoiceLockUndo)
    assert restored.previous_locked_at == locked_at
    assert restored.previous_locked_by_user_id == "finance-1"


def test_undo_for_unassigned_work_keeps_null_assignee() -> None:
    work_item_id = uuid.uuid4()

    restored = parse_undo("REASSIGN_WORK", {"work_item_id": str(work_item_id), "previous_assignee_id": None})

    assert isinstance(restored, WorkAssigneeUndo)
    assert restored.previous_assignee_id is None


def test_undo_missing_identifier_is_invalid() -> None:
    with pytest.raises(ValidationError):
        parse_undo("CREATE_NUDGE", {})
