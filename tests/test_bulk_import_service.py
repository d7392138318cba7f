from datetime import date, datetime, timedelta
from decimal import Decimal

import pytest

from finhub.core.exceptions import ConflictError, ValidationError
from finhub.schemas import BulkConfirmResult, BulkImportSession
from finhub.services.bulk_import_service import (
    ImportOutcome, ImportWizard, OutcomeKind, ReviewSet, SelectedFile, Stage, WizardStore, prefilter_files
)

TODAY = date(2024, 6, 30)


def pdf(name="receipt.pdf", size=1024):
    return SelectedFile(name=name, size=size, content_type="application/pdf", data=b"%PDF")


def make_session():
    return BulkImportSession.from_api({
        "sessionId": "sess-1",
        "extractedExpenses": [
            {"tempId": "t1", "fileName": "a.pdf", "vendorName": "Coffee Co", "transactionDate": "2024-06-01",
             "amount": "12.50", "confidence": "HIGH"},
            {"tempId": "t2", "fileName": "b.pdf", "vendorName": "Office Depot", "transactionDate": "2024-06-02",
             "amount": 80, "lineItems": "Paper x2"},
            {"tempId": "t3", "fileName": "c.pdf", "error": "Could not read file"},
        ],
    })


# ==================== FILE SELECTION ====================

def test_prefilter_rejects_type_and_size():
    selection = prefilter_files([], [pdf("notes.exe"), pdf("big.pdf", size=11 * 1024 * 1024), pdf()],
                                max_files=10, max_size_mb=10, allowed_extensions=["pdf", "png"])
    assert [f.name for f in selection.files] == ["receipt.pdf"]
    assert selection.rejected == [
        'File "notes.exe" is not a supported type.',
        'File "big.pdf" is too large. Maximum size is 10MB.',
    ]
    assert selection.warning is None


def test_prefilter_truncates_to_cap():
    current = [pdf("one.pdf"), pdf("two.pdf")]
    selection = prefilter_files(current, [pdf("3.pdf"), pdf("4.pdf"), pdf("5.pdf")],
                                max_files=4, max_size_mb=10, allowed_extensions=["pdf"])
    assert [f.name for f in selection.files] == ["one.pdf", "two.pdf", "3.pdf", "4.pdf"]
    assert selection.warning == "Maximum 4 files allowed. Only first 2 files will be added."


# ==================== REVIEW ====================

def test_session_tags_failed_rows():
    review = ReviewSet.from_session(make_session())
    assert len(review) == 3
    assert [r.temp_id for r in review.failed_rows()] == ["t3"]
    assert review.included_count == 2
    assert review.summary() == "2 of 3 expenses will be created"


def test_failed_rows_cannot_be_included_or_edited():
    review = ReviewSet.from_session(make_session())
    with pytest.raises(ConflictError):
        review.set_included("t3", True)
    with pytest.raises(ConflictError):
        review.edit("t3", amount="5")
    review.set_included("t3", False)
    assert review.included_count == 2


def test_edit_and_exclude():
    review = ReviewSet.from_session(make_session())
    review.edit("t1", amount="15.00", vendor_name="Cafe")
    review.toggle("t2")
    payload = review.payload()
    assert len(payload) == 1
    assert payload[0]["tempId"] == "t1"
    assert payload[0]["vendorName"] == "Cafe"
    assert payload[0]["amount"] == "15.00"
    assert payload[0]["transactionDate"] == "2024-06-01"


def test_edit_rejects_unknown_field_and_bad_date():
    review = ReviewSet.from_session(make_session())
    with pytest.raises(ValidationError):
        review.edit("t1", confidence="low")
    with pytest.raises(ValidationError) as exc:
        review.edit("t1", transaction_date="not-a-date")
    assert "t1.transaction_date" in exc.value.errors
    with pytest.raises(ValidationError):
        review.get("missing")


def test_apply_form_reads_checkboxes_and_fields():
    review = ReviewSet.from_session(make_session())
    review.apply_form({
        "rows[t1][include]": "on",
        "rows[t1][amount]": "13.75",
        "rows[t2][amount]": "999",
    })
    assert [r.temp_id for r in review.included_rows()] == ["t1"]
    assert review.get("t1").amount == Decimal("13.75")
    assert review.get("t2").amount == Decimal("80")


def test_rejected_form_leaves_rows_untouched():
    review = ReviewSet.from_session(make_session())
    with pytest.raises(ValidationError) as exc:
        review.apply_form({
            "rows[t1][amount]": "99",
            "rows[t2][include]": "on",
            "rows[t2][transaction_date]": "not-a-date",
        })
    assert "t2.transaction_date" in exc.value.errors
    assert review.get("t1").amount == Decimal("12.50")
    assert review.is_included(review.get("t1"))
    assert review.included_count == 2


def test_apply_form_reports_every_bad_row():
    review = ReviewSet.from_session(make_session())
    with pytest.raises(ValidationError) as exc:
        review.apply_form({
            "rows[t1][include]": "on",
            "rows[t1][transaction_date]": "bad",
            "rows[t2][include]": "on",
            "rows[t2][transaction_date]": "2024-13-45",
        })
    assert set(exc.value.errors) == {"t1.transaction_date", "t2.transaction_date"}


def test_validate_checks_included_rows_only():
    review = ReviewSet.from_session(make_session())
    review.edit("t2", transaction_date="2024-07-05")
    with pytest.raises(ValidationError) as exc:
        review.validate(TODAY)
    assert exc.value.errors == {"t2.transaction_date": ["Transaction date cannot be in the future"]}

    review.set_included("t2", False)
    review.validate(TODAY)


def test_validate_requires_a_row():
    review = ReviewSet.from_session(make_session())
    review.set_included("t1", False)
    review.set_included("t2", False)
    with pytest.raises(ValidationError) as exc:
        review.validate(TODAY)
    assert exc.value.message == "Please select at least one expense to import"


def test_payload_carries_line_items_as_notes():
    review = ReviewSet.from_session(make_session())
    notes = {row["tempId"]: row["notes"] for row in review.payload()}
    assert notes == {"t1": None, "t2": "Paper x2"}


# ==================== OUTCOME ====================

@pytest.mark.parametrize("created,failed,kind,message", [
    (3, 0, OutcomeKind.SUCCESS, "Successfully created 3 expenses"),
    (2, 1, OutcomeKind.PARTIAL, "Created 2 expenses, but 1 failed"),
    (0, 1, OutcomeKind.FAILURE, "Failed to create 1 expense"),
])
def test_outcome_kinds(created, failed, kind, message):
    outcome = ImportOutcome.from_result(BulkConfirmResult(created=created, failed=failed), created + failed)
    assert outcome.kind == kind
    assert outcome.message == message


def test_outcome_counts_missing_rows_as_failed():
    outcome = ImportOutcome.from_result(BulkConfirmResult(created=1, failed=0), 3)
    assert outcome.failed == 2
    assert outcome.kind == OutcomeKind.PARTIAL


def test_outcome_error_lines():
    result = BulkConfirmResult.model_validate({"created": 0, "failed": 1,
                                               "errors": [{"tempId": "t1", "vendorName": "Cafe", "error": "Duplicate"}]})
    assert ImportOutcome.from_result(result, 1).error_lines() == ["Cafe: Duplicate"]


# ==================== WIZARD ====================

def test_wizard_happy_path():
    wizard = ImportWizard()
    wizard.select_files([pdf()])
    ticket, files = wizard.begin_extraction()
    assert wizard.stage == Stage.PROCESSING
    assert [f.name for f in files] == ["receipt.pdf"]
    with pytest.raises(ConflictError):
        wizard.select_files([pdf("late.pdf")])

    assert wizard.complete_extraction(ticket, make_session())
    assert wizard.stage == Stage.REVIEW

    ticket, session_id, payload = wizard.begin_confirm(TODAY)
    assert session_id == "sess-1"
    assert len(payload) == 2
    with pytest.raises(ConflictError):
        wizard.begin_confirm(TODAY)

    outcome = wizard.complete_confirm(ticket, BulkConfirmResult(created=2), len(payload))
    assert outcome.kind == OutcomeKind.SUCCESS
    assert wizard.stage == Stage.DONE


def test_extraction_requires_files():
    with pytest.raises(ValidationError):
        ImportWizard().begin_extraction()


def test_failed_extraction_keeps_files():
    wizard = ImportWizard()
    wizard.select_files([pdf()])
    ticket, _ = wizard.begin_extraction()
    assert wizard.fail_extraction(ticket, "Extraction service unavailable")
    assert wizard.stage == Stage.UPLOAD
    assert [f.name for f in wizard.files] == ["receipt.pdf"]
    assert wizard.last_error == "Extraction service unavailable"


def test_result_after_reset_is_discarded():
    wizard = ImportWizard()
    wizard.select_files([pdf()])
    ticket, _ = wizard.begin_extraction()
    wizard.reset()
    assert not wizard.complete_extraction(ticket, make_session())
    assert wizard.stage == Stage.UPLOAD
    assert wizard.review is None
    assert wizard.files == []


def test_confirm_failure_keeps_review_for_retry():
    wizard = ImportWizard()
    wizard.select_files([pdf()])
    ticket, _ = wizard.begin_extraction()
    wizard.complete_extraction(ticket, make_session())
    ticket, _, _ = wizard.begin_confirm(TODAY)
    assert wizard.fail_confirm(ticket, "Server error")
    assert wizard.stage == Stage.REVIEW
    assert not wizard.confirming
    assert wizard.review.included_count == 2


def test_store_expires_idle_wizards():
    now = [datetime(2024, 6, 30, 12, 0)]
    store = WizardStore(ttl_minutes=30, clock=lambda: now[0])
    wizard = store.create()
    assert store.get(wizard.id) is wizard
    now[0] += timedelta(minutes=31)
    assert store.get(wizard.id) is None
    assert store.get_or_create(wizard.id) is not wizard
