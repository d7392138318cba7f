"""
Form parsing helpers shared by the views
"""
from datetime import date
from typing import Any, Iterable, List, Mapping, Optional

from flask import flash

from finhub.core.exceptions import ValidationError
from finhub.services.bulk_import_service import SelectedFile

TRUTHY = {'on', 'true', '1', 'yes'}


def form_str(form: Mapping[str, Any], name: str) -> Optional[str]:
    value = form.get(name)
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def form_date(form: Mapping[str, Any], name: str) -> Optional[date]:
    value = form_str(form, name)
    if not value:
        return None
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        return None


def form_bool(form: Mapping[str, Any], name: str) -> bool:
    return str(form.get(name, '')).strip().lower() in TRUTHY


def flash_errors(error: ValidationError) -> None:
    for messages in error.errors.values():
        for message in messages:
            flash(message, 'error')


def uploaded_files(uploads: Iterable[Any]) -> List[SelectedFile]:
    """Read multipart uploads into SelectedFile objects, skipping empty inputs"""
    files = []
    for upload in uploads:
        if not upload or not upload.filename:
            continue
        data = upload.read()
        files.append(SelectedFile(
            name=upload.filename,
            size=len(data),
            content_type=upload.mimetype or 'application/octet-stream',
            data=data,
        ))
    return files
