"""
Exam file loading.

Reads a scanned exam from disk and prepares it for the grading oracle.
Images are passed through unchanged; PDFs (scanner output) are rasterized
to PNG, first page only.
"""

from pathlib import Path

import fitz  # PyMuPDF

from corrector.config import Settings, get_settings
from corrector.errors import CorrectorError
from corrector.models import ExamImage

IMAGE_MIME_TYPES: dict[str, str] = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".webp": "image/webp",
    ".gif": "image/gif",
}

PDF_RENDER_DPI = 200


class ExamFileError(CorrectorError):
    """
    Raised when an exam file can't be loaded.

    Contains detailed information about the failure cause.
    """

    def __init__(self, message: str, file_path: str | Path, cause: Exception | None = None):
        self.file_path = str(file_path)
        self.cause = cause
        super().__init__(f"Failed to load '{file_path}': {message}")


def load_exam_image(file_path: Path | str, settings: Settings | None = None) -> ExamImage:
    """
    Load an exam file as an image for grading.

    Args:
        file_path: Path to an image or a scanned PDF.
        settings: Configuration settings. Uses global settings if not provided.

    Returns:
        ExamImage with the raw bytes and their MIME type.

    Raises:
        ExamFileError: If the file is missing, unsupported, too large or unreadable.
    """
    settings = settings or get_settings()
    path = Path(file_path) if isinstance(file_path, str) else file_path
    _validate_file(path, settings)

    extension = path.suffix.lower()
    if extension == ".pdf":
        return ExamImage(data=_rasterize_pdf(path), mime_type="image/png", source_name=path.name)

    data = path.read_bytes()
    if not data:
        raise ExamFileError("File is empty", path)
    return ExamImage(data=data, mime_type=IMAGE_MIME_TYPES[extension], source_name=path.name)


def _validate_file(path: Path, settings: Settings) -> None:
    """
    Validate that the file exists, is supported and isn't too large.

    Raises:
        ExamFileError: If any check fails.
    """
    if not path.exists():
        raise ExamFileError("File does not exist", path)

    if not path.is_file():
        raise ExamFileError("Path is not a file", path)

    extension = path.suffix.lower()
    supported = tuple(
        ext for ext in settings.supported_extensions if ext in IMAGE_MIME_TYPES or ext == ".pdf"
    )
    if extension not in supported:
        raise ExamFileError(f"Unsupported file format. Expected one of: {supported}", path)

    size_mb = path.stat().st_size / (1024 * 1024)
    if size_mb > settings.max_file_size_mb:
        raise ExamFileError(
            f"File is {size_mb:.1f} MB, larger than the {settings.max_file_size_mb} MB limit", path
        )


def _rasterize_pdf(path: Path) -> bytes:
    try:
        with fitz.open(path) as doc:
            if doc.page_count == 0:
                raise ExamFileError("PDF has no pages", path)
            pixmap = doc[0].get_pixmap(dpi=PDF_RENDER_DPI)
            return pixmap.tobytes("png")
    except fitz.FileDataError as e:
        raise ExamFileError("PDF file is corrupted or invalid", path, cause=e) from e
    except fitz.EmptyFileError as e:
        raise ExamFileError("PDF file is empty", path, cause=e) from e
