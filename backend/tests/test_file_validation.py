import pytest

from filekeeper.errors import ValidationRejected
from filekeeper.services.file_validation import (
    UNTRUSTED_MESSAGE,
    FileValidationService,
    extract_extension,
    infer_media_type,
)

PDF_BYTES = b"%PDF-1.4\n%\xe2\xe3\xcf\xd3\n1 0 obj\n<<>>\nendobj\n"
JPEG_BYTES = b"\xff\xd8\xff\xe0\x00\x10JFIF\x00" + b"\x00" * 32


@pytest.fixture
def validator():
    return FileValidationService(max_file_size=1024 * 1024)


def test_extract_extension_uses_last_suffix():
    assert extract_extension("archive.tar.gz") == ".gz"
    assert extract_extension("evil.png.js") == ".js"
    assert extract_extension("PHOTO.JPG") == ".jpg"


@pytest.mark.parametrize("name", ["README", "trailing.", ""])
def test_extract_extension_rejects_missing_extension(name):
    with pytest.raises(ValidationRejected) as exc_info:
        extract_extension(name)
    assert exc_info.value.status_code == 400


def test_infer_media_type_from_extension_table():
    assert infer_media_type(".png") == "image/png"
    assert infer_media_type(".jpg") == "image/jpeg"
    assert infer_media_type(".webp") == "image/webp"
    assert infer_media_type(".no-such-ext") is None


def test_verify_accepts_png(validator, png_bytes):
    descriptor = validator.verify("photo.png", len(png_bytes), png_bytes)

    assert descriptor.display_name == "photo.png"
    assert descriptor.extension == ".png"
    assert descriptor.media_type == "image/png"
    assert descriptor.byte_size == len(png_bytes)


def test_verify_accepts_uppercase_extension(validator):
    descriptor = validator.verify("SCAN.JPG", None, JPEG_BYTES)
    assert descriptor.extension == ".jpg"
    assert descriptor.media_type == "image/jpeg"


def test_verify_accepts_pdf_and_plain_text(validator):
    assert validator.verify("doc.pdf", None, PDF_BYTES).media_type == "application/pdf"
    assert validator.verify("notes.txt", None, b"hello world\n").media_type == "text/plain"


def test_double_extension_is_judged_by_last_suffix(validator, png_bytes):
    with pytest.raises(ValidationRejected) as exc_info:
        validator.verify("evil.png.js", None, png_bytes)
    assert "File extension not allowed" in exc_info.value.message
    assert ".png" in exc_info.value.message


def test_oversized_upload_is_rejected_with_413(png_bytes):
    validator = FileValidationService(max_file_size=100)
    with pytest.raises(ValidationRejected) as exc_info:
        validator.verify("photo.png", len(png_bytes), png_bytes)
    assert exc_info.value.status_code == 413
    assert "exceeds maximum allowed size" in exc_info.value.message


def test_declared_size_alone_can_trip_the_limit():
    validator = FileValidationService(max_file_size=100)
    with pytest.raises(ValidationRejected):
        validator.verify("notes.txt", 10_000, b"tiny")


def test_size_is_checked_before_extension():
    validator = FileValidationService(max_file_size=10)
    with pytest.raises(ValidationRejected) as exc_info:
        validator.verify("payload.exe", None, b"x" * 50)
    assert exc_info.value.status_code == 413


def test_signature_mismatch_is_untrusted(validator, png_bytes):
    with pytest.raises(ValidationRejected) as exc_info:
        validator.verify("photo.jpg", None, png_bytes)
    assert exc_info.value.message == UNTRUSTED_MESSAGE


def test_text_file_carrying_png_signature_is_untrusted(validator, png_bytes):
    with pytest.raises(ValidationRejected) as exc_info:
        validator.verify("notes.txt", None, png_bytes)
    assert exc_info.value.message == UNTRUSTED_MESSAGE


def test_cross_validation_failure_uses_same_message(png_bytes):
    # .png mapped to a type its inferred media type does not match
    validator = FileValidationService(allowed_types={".png": ["image/gif"]})
    with pytest.raises(ValidationRejected) as exc_info:
        validator.verify("photo.png", None, png_bytes)
    assert exc_info.value.message == UNTRUSTED_MESSAGE


def test_unknown_media_type_is_rejected():
    validator = FileValidationService(allowed_types={".zzq": ["application/x-zzq"]})
    with pytest.raises(ValidationRejected) as exc_info:
        validator.verify("blob.zzq", None, b"data")
    assert exc_info.value.message == "Could not determine file type"


def test_sniff_detects_registered_signatures(validator, png_bytes):
    assert validator.sniff(png_bytes) == "image/png"
    assert validator.sniff(PDF_BYTES) == "application/pdf"
    assert validator.sniff(b"plain words") is None
