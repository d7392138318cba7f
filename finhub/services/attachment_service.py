"""
Attachments - file checks for documents stored against expenses, invoices, clients and contracts
"""
from typing import Iterable

from finhub.core.config import settings
from finhub.core.exceptions import ValidationError
from finhub.services.bulk_import_service import FileSelection, SelectedFile, prefilter_files

ENTITY_TYPES = ("expense", "invoice", "client", "contract")

SIZE_UNITS = ("B", "KB", "MB", "GB")


def check_entity_type(entity_type: str) -> str:
    value = (entity_type or "").strip().lower()
    if value not in ENTITY_TYPES:
        raise ValidationError.single("entity_type", f"Attachments cannot be added to '{entity_type}'")
    return value


def prefilter_attachments(incoming: Iterable[SelectedFile]) -> FileSelection:
    """One upload's worth of files, checked against the attachment limits"""
    return prefilter_files(
        [], incoming,
        max_files=settings.ATTACHMENT_MAX_FILES,
        max_size_mb=settings.ATTACHMENT_MAX_FILE_MB,
        allowed_extensions=settings.attachment_extensions_list,
    )


def format_file_size(size: int) -> str:
    """Human readable size, e.g. 512 B or 1.5 MB"""
    value = float(max(size or 0, 0))
    if value < 1024:
        return f"{int(value)} B"
    for unit in SIZE_UNITS[1:]:
        value /= 1024
        if value < 1024 or unit == SIZE_UNITS[-1]:
            break
    return f"{value:.1f} {unit}"
