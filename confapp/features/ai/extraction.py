"""
Text extraction from uploaded submission files.
"""
from io import BytesIO

from pypdf import PdfReader
from pypdf.errors import PdfReadError

from confapp.utils import get_logger


log = get_logger(__name__)

# Below this many characters there is nothing worth analysing
MIN_TEXT_LENGTH = 100


class ExtractionError(Exception):
    pass


def extract_text(data: bytes, mime_type: str) -> str:
    """
    Extract plain text from file bytes.

    PDFs are read page by page with pypdf; ``text/*`` files are decoded as
    UTF-8. Any other type cannot be analysed.
    """
    if mime_type == "application/pdf":
        try:
            reader = PdfReader(BytesIO(data))
            pages = [page.extract_text() or "" for page in reader.pages]
        except PdfReadError as e:
            raise ExtractionError(f"Could not read PDF: {e}") from e
        text = "\n".join(pages)
    elif mime_type.startswith("text/"):
        text = data.decode("utf-8", errors="replace")
    else:
        raise ExtractionError(f"Text extraction not supported for {mime_type}")

    text = text.strip()
    log.debug(f"Extracted {len(text)} characters from {mime_type} file")
    if len(text) < MIN_TEXT_LENGTH:
        raise ExtractionError("Insufficient text extracted from document")
    return text
