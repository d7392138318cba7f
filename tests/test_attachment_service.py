import pytest

from finhub.core.exceptions import ValidationError
from finhub.services.attachment_service import check_entity_type, format_file_size, prefilter_attachments
from finhub.services.bulk_import_service import SelectedFile


def test_entity_types():
    assert check_entity_type("Invoice") == "invoice"
    with pytest.raises(ValidationError):
        check_entity_type("subscription")


def test_attachment_limits():
    files = [SelectedFile(name="notes.txt", size=10), SelectedFile(name="setup.exe", size=10)]
    files += [SelectedFile(name=f"r{i}.pdf", size=10) for i in range(10)]
    selection = prefilter_attachments(files)
    assert [f.name for f in selection.files][:2] == ["notes.txt", "r0.pdf"]
    assert len(selection.files) == 10
    assert selection.rejected == ['File "setup.exe" is not a supported type.']
    assert selection.warning == "Maximum 10 files allowed. Only first 10 files will be added."


@pytest.mark.parametrize("size,expected", [
    (0, "0 B"),
    (512, "512 B"),
    (1536, "1.5 KB"),
    (5 * 1024 * 1024, "5.0 MB"),
])
def test_format_file_size(size, expected):
    assert format_file_size(size) == expected
