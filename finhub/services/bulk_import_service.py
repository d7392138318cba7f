"""
Bulk Import Reconciliation

Upload -> extract -> review/edit -> confirm. The review set lives only in
this process until confirm; nothing is persisted upstream before then.
"""
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple
import os
import threading
import uuid
import logging

from pydantic import ValidationError as PydanticValidationError

from finhub.core.config import settings
from finhub.core.exceptions import ConflictError, ValidationError
from finhub.core.money import as_api_amount
from finhub.schemas import (
    BulkConfirmResult, BulkImportSession, ConfirmError, ExtractedExpense, FailedExtraction, ReviewRow
)
from finhub.services.expense_service import expense_field_errors

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = (
    "vendor_name", "transaction_date", "amount", "category_id",
    "payment_method_id", "description", "notes",
)


def _plural(count: int, word: str = "expense") -> str:
    return f"{count} {word}{'' if count == 1 else 's'}"


# ==================== FILE SELECTION ====================

@dataclass(frozen=True)
class SelectedFile:
    name: str
    size: int
    content_type: str = "application/octet-stream"
    data: bytes = field(default=b"", repr=False)

    @property
    def extension(self) -> str:
        return os.path.splitext(self.name)[1].lower().lstrip(".")


@dataclass
class FileSelection:
    files: List[SelectedFile]
    rejected: List[str] = field(default_factory=list)
    warning: Optional[str] = None

    @property
    def messages(self) -> List[str]:
        return self.rejected + ([self.warning] if self.warning else [])


def prefilter_files(current: Sequence[SelectedFile], incoming: Iterable[SelectedFile],
                    max_files: Optional[int] = None, max_size_mb: Optional[int] = None,
                    allowed_extensions: Optional[Iterable[str]] = None) -> FileSelection:
    """
    Add incoming files to the current selection.

    Oversized or unsupported files are rejected one by one; if the rest would
    overflow the file cap, the selection is truncated and a warning says how
    many were kept.
    """
    max_files = max_files if max_files is not None else settings.BULK_IMPORT_MAX_FILES
    max_size_mb = max_size_mb if max_size_mb is not None else settings.BULK_IMPORT_MAX_FILE_MB
    allowed = {ext.lower().lstrip(".") for ext in (allowed_extensions or settings.allowed_extensions_list)}
    max_bytes = max_size_mb * 1024 * 1024

    rejected: List[str] = []
    valid: List[SelectedFile] = []
    for candidate in incoming:
        if candidate.extension not in allowed:
            rejected.append(f'File "{candidate.name}" is not a supported type.')
        elif candidate.size > max_bytes:
            rejected.append(f'File "{candidate.name}" is too large. Maximum size is {max_size_mb}MB.')
        else:
            valid.append(candidate)

    room = max(0, max_files - len(current))
    kept = valid[:room]
    warning = None
    if len(valid) > len(kept):
        warning = f"Maximum {max_files} files allowed. Only first {len(kept)} files will be added."

    return FileSelection(files=list(current) + kept, rejected=rejected, warning=warning)


# ==================== REVIEW SET ====================

class ReviewSet:
    """Ordered candidate rows keyed by their temporary id"""

    def __init__(self, rows: Iterable[ReviewRow]):
        self._rows: "OrderedDict[str, ReviewRow]" = OrderedDict()
        for row in rows:
            self._rows[row.temp_id] = row

    @classmethod
    def from_session(cls, session: BulkImportSession) -> "ReviewSet":
        return cls(session.rows)

    @property
    def rows(self) -> List[ReviewRow]:
        return list(self._rows.values())

    def __len__(self) -> int:
        return len(self._rows)

    def get(self, temp_id: str) -> ReviewRow:
        try:
            return self._rows[temp_id]
        except KeyError:
            raise ValidationError.single("temp_id", f"Unknown import row '{temp_id}'")

    def _edited(self, row: ReviewRow, changes: Mapping[str, Any]) -> ExtractedExpense:
        """Row with changes applied and re-parsed; the set itself is untouched"""
        if isinstance(row, FailedExtraction):
            raise ConflictError(f'"{row.file_name}" could not be read and cannot be edited')
        unknown = set(changes) - set(EDITABLE_FIELDS)
        if unknown:
            raise ValidationError.single(sorted(unknown)[0], "This field cannot be edited")
        try:
            return ExtractedExpense.model_validate({**row.model_dump(), **changes})
        except PydanticValidationError as e:
            errors: Dict[str, List[str]] = {}
            for error in e.errors():
                name = str(error["loc"][0]) if error["loc"] else "row"
                errors.setdefault(f"{row.temp_id}.{name}", []).append(f"Invalid {name.replace('_', ' ')}")
            raise ValidationError(errors)

    def edit(self, temp_id: str, **changes: Any) -> ExtractedExpense:
        updated = self._edited(self.get(temp_id), changes)
        self._rows[temp_id] = updated
        return updated

    def set_included(self, temp_id: str, included: bool) -> None:
        row = self.get(temp_id)
        if isinstance(row, FailedExtraction):
            if included:
                raise ConflictError(f'"{row.file_name}" could not be read and cannot be imported')
            return
        if row.exclude == (not included):
            return
        self._rows[temp_id] = row.model_copy(update={"exclude": not included})

    def toggle(self, temp_id: str) -> None:
        row = self.get(temp_id)
        self.set_included(temp_id, row.exclude)

    def is_included(self, row: ReviewRow) -> bool:
        return isinstance(row, ExtractedExpense) and not row.exclude

    def included_rows(self) -> List[ExtractedExpense]:
        return [row for row in self._rows.values() if self.is_included(row)]

    def failed_rows(self) -> List[FailedExtraction]:
        return [row for row in self._rows.values() if isinstance(row, FailedExtraction)]

    @property
    def included_count(self) -> int:
        return len(self.included_rows())

    def summary(self) -> str:
        total = len(self._rows)
        return f"{self.included_count} of {_plural(total)} will be created"

    def apply_form(self, form: Mapping[str, Any]) -> None:
        """
        Apply a submitted review table.

        Rows are named rows[<temp_id>][<field>]; an unchecked include box
        excludes the row, and excluded rows keep their previous values.
        Every row is checked before any is changed, so a rejected form
        leaves the set exactly as it was.
        """
        staged: "OrderedDict[str, ReviewRow]" = OrderedDict()
        errors: Dict[str, List[str]] = {}
        for temp_id, row in self._rows.items():
            staged[temp_id] = row
            if isinstance(row, FailedExtraction):
                continue
            prefix = f"rows[{temp_id}]"
            included = f"{prefix}[include]" in form
            if row.exclude == included:
                row = row.model_copy(update={"exclude": not included})
            if included:
                changes = {
                    name: form.get(f"{prefix}[{name}]")
                    for name in EDITABLE_FIELDS
                    if f"{prefix}[{name}]" in form
                }
                if changes:
                    try:
                        row = self._edited(row, changes)
                    except ValidationError as e:
                        for key, messages in e.errors.items():
                            errors.setdefault(key, []).extend(messages)
                        continue
            staged[temp_id] = row

        if errors:
            raise ValidationError(errors)
        self._rows = staged

    def validate(self, today: Optional[date] = None) -> None:
        """Check every included row; failed and excluded rows are never checked or sent"""
        errors: Dict[str, List[str]] = {}
        included = self.included_rows()
        if not included:
            raise ValidationError.single("rows", "Please select at least one expense to import")

        for row in included:
            row_errors = expense_field_errors(
                row.amount, row.transaction_date, row.vendor_name, row.description, row.notes, today
            )
            for name, messages in row_errors.items():
                errors[f"{row.temp_id}.{name}"] = messages

        if errors:
            raise ValidationError(errors)

    def payload(self) -> List[dict]:
        """Expenses array for POST /expenses/bulk-confirm"""
        return [
            {
                "tempId": row.temp_id,
                "vendorName": row.vendor_name,
                "transactionDate": row.transaction_date.isoformat() if row.transaction_date else None,
                "amount": as_api_amount(row.amount),
                "categoryId": row.category_id,
                "paymentMethodId": row.payment_method_id,
                "description": row.description,
                "notes": row.notes or row.line_items,
                "currency": row.currency,
            }
            for row in self.included_rows()
        ]


# ==================== CONFIRM OUTCOME ====================

class OutcomeKind(str, Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILURE = "failure"


@dataclass
class ImportOutcome:
    submitted: int
    created: int
    failed: int
    errors: List[ConfirmError] = field(default_factory=list)

    @classmethod
    def from_result(cls, result: BulkConfirmResult, submitted: int) -> "ImportOutcome":
        created, failed = result.created, result.failed
        if created + failed != submitted:
            logger.warning(
                "Bulk confirm reported %s created + %s failed for %s submitted rows",
                created, failed, submitted,
            )
            failed = max(failed, submitted - created)
        return cls(submitted=submitted, created=created, failed=failed, errors=list(result.errors))

    @property
    def kind(self) -> OutcomeKind:
        if self.failed == 0 and self.created > 0:
            return OutcomeKind.SUCCESS
        if self.created > 0:
            return OutcomeKind.PARTIAL
        return OutcomeKind.FAILURE

    @property
    def message(self) -> str:
        if self.kind == OutcomeKind.SUCCESS:
            return f"Successfully created {_plural(self.created)}"
        if self.kind == OutcomeKind.PARTIAL:
            return f"Created {_plural(self.created)}, but {self.failed} failed"
        return f"Failed to create {_plural(self.failed)}"

    def error_lines(self) -> List[str]:
        return [f"{error.vendor_name or 'Unknown'}: {error.error}" for error in self.errors]


# ==================== WIZARD ====================

class Stage(str, Enum):
    UPLOAD = "upload"
    PROCESSING = "processing"
    REVIEW = "review"
    DONE = "done"


class ImportWizard:
    """
    One user's import in progress.

    Every reset bumps the generation; a request started under an older
    generation gets its result discarded when it returns.
    """

    def __init__(self, wizard_id: Optional[str] = None, clock: Callable[[], datetime] = datetime.now):
        self.id = wizard_id or uuid.uuid4().hex
        self._clock = clock
        self._lock = threading.RLock()
        self.generation = 0
        self._clear()

    def _clear(self) -> None:
        self.stage = Stage.UPLOAD
        self.files: List[SelectedFile] = []
        self.session_id: Optional[str] = None
        self.review: Optional[ReviewSet] = None
        self.outcome: Optional[ImportOutcome] = None
        self.confirming = False
        self.last_error: Optional[str] = None
        self.touched_at = self._clock()

    def _touch(self) -> None:
        self.touched_at = self._clock()

    def _is_current(self, ticket: int, stage: Stage) -> bool:
        if ticket != self.generation or self.stage != stage:
            logger.info("Discarding stale bulk import result for wizard %s (ticket %s, generation %s)",
                        self.id, ticket, self.generation)
            return False
        return True

    # ---- upload ----

    def select_files(self, incoming: Iterable[SelectedFile]) -> FileSelection:
        with self._lock:
            if self.stage != Stage.UPLOAD:
                raise ConflictError("Files can only be added before processing starts")
            selection = prefilter_files(self.files, incoming)
            self.files = selection.files
            self._touch()
            return selection

    def remove_file(self, index: int) -> None:
        with self._lock:
            if self.stage != Stage.UPLOAD:
                raise ConflictError("Files can only be removed before processing starts")
            if 0 <= index < len(self.files):
                del self.files[index]
            self._touch()

    # ---- extract ----

    def begin_extraction(self) -> Tuple[int, List[SelectedFile]]:
        with self._lock:
            if self.stage != Stage.UPLOAD:
                raise ConflictError("Files are already being processed")
            if not self.files:
                raise ValidationError.single("files", "Please select at least one file")
            self.stage = Stage.PROCESSING
            self.last_error = None
            self._touch()
            logger.info("Bulk import wizard %s extracting %s files", self.id, len(self.files))
            return self.generation, list(self.files)

    def complete_extraction(self, ticket: int, session: BulkImportSession) -> bool:
        with self._lock:
            if not self._is_current(ticket, Stage.PROCESSING):
                return False
            self.session_id = session.session_id
            self.review = ReviewSet.from_session(session)
            self.stage = Stage.REVIEW
            self._touch()
            logger.info("Bulk import wizard %s extracted %s rows (%s failed)",
                        self.id, len(self.review), len(self.review.failed_rows()))
            return True

    def fail_extraction(self, ticket: int, message: str) -> bool:
        """Back to upload with the selected files intact; no session exists"""
        with self._lock:
            if not self._is_current(ticket, Stage.PROCESSING):
                return False
            self.stage = Stage.UPLOAD
            self.session_id = None
            self.review = None
            self.last_error = message
            self._touch()
            return True

    # ---- confirm ----

    def begin_confirm(self, today: Optional[date] = None) -> Tuple[int, str, List[dict]]:
        with self._lock:
            if self.stage != Stage.REVIEW or self.review is None:
                raise ConflictError("There is nothing to confirm")
            if self.confirming:
                raise ConflictError("This import is already being confirmed")
            self.review.validate(today)
            self.confirming = True
            self.last_error = None
            self._touch()
            return self.generation, self.session_id, self.review.payload()

    def complete_confirm(self, ticket: int, result: BulkConfirmResult, submitted: int) -> Optional[ImportOutcome]:
        with self._lock:
            if not self._is_current(ticket, Stage.REVIEW):
                return None
            self.confirming = False
            self.outcome = ImportOutcome.from_result(result, submitted)
            self.stage = Stage.DONE
            self._touch()
            logger.info("Bulk import wizard %s confirmed: %s", self.id, self.outcome.message)
            return self.outcome

    def fail_confirm(self, ticket: int, message: str) -> bool:
        """Review data stays as it was so the user can retry"""
        with self._lock:
            if not self._is_current(ticket, Stage.REVIEW):
                return False
            self.confirming = False
            self.last_error = message
            self._touch()
            return True

    def reset(self) -> None:
        with self._lock:
            self.generation += 1
            self._clear()
            logger.info("Bulk import wizard %s reset (generation %s)", self.id, self.generation)


class WizardStore:
    """In-process holder of import wizards; idle wizards expire"""

    def __init__(self, ttl_minutes: Optional[int] = None, clock: Callable[[], datetime] = datetime.now):
        self._ttl = timedelta(minutes=ttl_minutes if ttl_minutes is not None else settings.IMPORT_WIZARD_TTL_MINUTES)
        self._clock = clock
        self._wizards: Dict[str, ImportWizard] = {}
        self._lock = threading.Lock()

    def _expired(self, wizard: ImportWizard) -> bool:
        return self._clock() - wizard.touched_at > self._ttl

    def get(self, wizard_id: Optional[str]) -> Optional[ImportWizard]:
        if not wizard_id:
            return None
        with self._lock:
            wizard = self._wizards.get(wizard_id)
            if wizard is not None and self._expired(wizard):
                del self._wizards[wizard_id]
                logger.info("Bulk import wizard %s expired", wizard_id)
                return None
            return wizard

    def create(self) -> ImportWizard:
        wizard = ImportWizard(clock=self._clock)
        with self._lock:
            self._purge_expired_locked()
            self._wizards[wizard.id] = wizard
        return wizard

    def get_or_create(self, wizard_id: Optional[str]) -> ImportWizard:
        return self.get(wizard_id) or self.create()

    def discard(self, wizard_id: Optional[str]) -> None:
        with self._lock:
            self._wizards.pop(wizard_id, None)

    def _purge_expired_locked(self) -> None:
        for wizard_id in [wid for wid, w in self._wizards.items() if self._expired(w)]:
            del self._wizards[wizard_id]

    def __len__(self) -> int:
        with self._lock:
            return len(self._wizards)


wizard_store = WizardStore()
