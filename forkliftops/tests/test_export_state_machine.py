from dataclasses import replace
from datetime import datetime, timedelta, timezone

from forkliftops.core.errors import RejectionKind
from forkliftops.domain.export import ExportStatus
from forkliftops.domain.job import Charge, JobStatus, JobType, PartUsage, new_job
from forkliftops.services import export_state_machine as esm

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


def _invoiced_job():
    job = new_job(job_id="j-exp", customer_id="c1", job_type=JobType.REPAIR, created_at=NOW, labor_cost=150.0)
    return replace(
        job,
        status=JobStatus.COMPLETED,
        invoiced_at=NOW,
        parts_used=(PartUsage(part_id="P-1", part_name="Hose", quantity=2, unit_price=45.5),),
        extra_charges=(Charge(charge_id="x1", name="Transport", amount=30.0),),
    )


def _pending(export_id="e1"):
    result = esm.create_export(_invoiced_job(), [], export_id=export_id, now=NOW)
    assert result.ok, result.rejection
    return result.record


def test_create_builds_line_items_and_total():
    record = _pending()
    assert record.status == ExportStatus.PENDING
    assert record.total_amount == 271.0
    assert [i["item_code"] for i in record.line_items] == ["P-1", "LABOR", "EXTRA"]
    assert record.currency == "MYR"


def test_cannot_export_uninvoiced_job():
    job = replace(_invoiced_job(), status=JobStatus.AWAITING_FINALIZATION, invoiced_at=None)
    result = esm.create_export(job, [], export_id="e1", now=NOW)
    assert result.ok is False
    assert result.rejection.kind == RejectionKind.PRECONDITION_FAILED


def test_second_export_while_one_is_active_conflicts():
    first = _pending()
    result = esm.create_export(_invoiced_job(), [first], export_id="e2", now=NOW)
    assert result.rejection.kind == RejectionKind.CONFLICT

    cancelled = esm.cancel(first, NOW).record
    assert esm.create_export(_invoiced_job(), [cancelled], export_id="e2", now=NOW).ok is True


def test_fail_then_retry_increments_retry_count():
    failed = esm.mark_failed(_pending(), "timeout", NOW).record
    assert failed.status == ExportStatus.FAILED
    assert failed.export_error == "timeout"

    retried = esm.retry(failed, [], NOW + timedelta(minutes=5))
    assert retried.ok is True
    assert retried.record.status == ExportStatus.PENDING
    assert retried.record.retry_count == 1
    assert retried.record.export_error is None


def test_retry_of_failed_record_conflicts_with_exported_one():
    failed = esm.mark_failed(_pending("e-old"), "timeout", NOW).record
    exported = esm.mark_exported(_pending("e-new"), "INV-0001", NOW).record
    assert exported.status == ExportStatus.EXPORTED

    result = esm.retry(failed, [exported], NOW)
    assert result.ok is False
    assert result.rejection.kind == RejectionKind.CONFLICT


def test_terminal_states_reject_further_transitions():
    exported = esm.mark_exported(_pending(), "INV-0001", NOW).record
    cancelled = esm.cancel(_pending("e2"), NOW).record

    for result in (
        esm.cancel(exported, NOW),
        esm.retry(exported, [], NOW),
        esm.mark_failed(exported, "x", NOW),
        esm.retry(cancelled, [], NOW),
        esm.mark_exported(cancelled, "INV-2", NOW),
    ):
        assert result.ok is False
        assert result.rejection.kind == RejectionKind.INVALID_TRANSITION


def test_blank_invoice_number_is_a_validation_error():
    result = esm.mark_exported(_pending(), "  ", NOW)
    assert result.rejection.kind == RejectionKind.VALIDATION_ERROR
