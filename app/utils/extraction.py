"""
Text extraction for attachments dropped into the inbox.

PDFs are read with pypdf, images go through Tesseract OCR, plain text is
decoded as UTF-8.
"""

import io

import pytesseract
from loguru import logger
from PIL import Image
from pypdf import PdfReader

from app.utils.helpers import get_file_extension
from domains.inbox.errors import CollaboratorError
from domains.inbox.interfaces import Storage

IMAGE_EXTENSIONS = {"png", "jpg", "jpeg", "gif", "webp", "bmp", "tiff"}
TEXT_EXTENSIONS = {"txt", "md", "csv"}


class AttachmentTextExtractor:
    """Extracts text from attachments stored in the vault."""

    def __init__(self, storage: Storage):
        self.storage = storage

    def extract_text(self, path: str) -> str:
        """
        Extract text from the attachment at ``path``.

        Args:
            path: Vault path of the attachment

        Returns:
            Extracted text (may be empty for images without text)
        """
        extension = get_file_extension(path)
        data = self.storage.read(path)

        if extension == "pdf":
            return self._extract_pdf(path, data)
        if extension in IMAGE_EXTENSIONS:
            return self._extract_image(path, data)
        if extension in TEXT_EXTENSIONS:
            return data.decode("utf-8", errors="replace")

        raise CollaboratorError(f"No text extractor for .{extension} files")

    def _extract_pdf(self, path: str, data: bytes) -> str:
        try:
            reader = PdfReader(io.BytesIO(data))
            pages = []
            for page in reader.pages:
                page_text = (page.extract_text() or "").strip()
                if page_text:
                    pages.append(page_text)
        except Exception as e:
            raise CollaboratorError(f"PDF extraction failed for {path}: {e}") from e

        logger.debug(f"Extracted {len(pages)} pages from {path}")
        return "\n\n".join(pages)

    def _extract_image(self, path: str, data: bytes) -> str:
        try:
            img = Image.open(io.BytesIO(data))
            text = pytesseract.image_to_string(img)
        except Exception as e:
            raise CollaboratorError(f"Tesseract OCR failed for {path}: {e}") from e

        text = text.strip()
        if not text:
            logger.debug(f"No text found in {path}")
        return text
