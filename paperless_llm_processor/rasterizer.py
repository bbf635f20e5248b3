"""
Page Rasterizer: turn a downloaded document into ordered page images.

PDFs are rendered with pdftoppm (poppler-utils) as grayscale JPEGs;
image documents pass through as a single page. pypdf provides the page
count used to check the renderer's output.
"""

import io
import logging
import re
import subprocess
import tempfile
from pathlib import Path
from typing import List, Optional

from pypdf import PdfReader

from paperless_llm_processor.exceptions import ExternalToolFailure, UnsupportedFormat
from paperless_llm_processor.vlm.vlm_types import PageImage

logger = logging.getLogger(__name__)

PDF_CONTENT_TYPE = "application/pdf"

IMAGE_EXTENSIONS = {
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/gif": ".gif",
    "image/webp": ".webp",
}

_PAGE_FILE_RE = re.compile(r"-(\d+)\.jpg$")


def detect_content_type(blob: bytes) -> str:
    """Sniff the content type from magic bytes."""
    head = blob[:16]
    if head.startswith(b"%PDF-"):
        return PDF_CONTENT_TYPE
    if head.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if head.startswith(b"\xff\xd8\xff"):
        return "image/jpeg"
    if head.startswith((b"GIF87a", b"GIF89a")):
        return "image/gif"
    if head[:4] == b"RIFF" and head[8:12] == b"WEBP":
        return "image/webp"
    return "application/octet-stream"


def count_pdf_pages(blob: bytes) -> Optional[int]:
    """Page count via pypdf, or None when pypdf can't read the file."""
    try:
        return len(PdfReader(io.BytesIO(blob)).pages)
    except Exception as e:
        logger.debug(f"pypdf could not read PDF: {e}")
        return None


class PageRasterizer:
    """Rasterize PDF and image documents into page images."""

    def __init__(
        self,
        pdftoppm: str = "pdftoppm",
        scale_to: int = 768,
        jpeg_quality: int = 80,
        debug_dir: Optional[str] = None,
        debug_strict: bool = False,
    ):
        self.pdftoppm = pdftoppm
        self.scale_to = scale_to
        self.jpeg_quality = jpeg_quality
        self.debug_dir = Path(debug_dir) if debug_dir else None
        self.debug_strict = debug_strict

    def rasterize(
        self,
        blob: bytes,
        content_type: Optional[str] = None,
        label: Optional[str] = None,
    ) -> List[PageImage]:
        """
        Convert a document into ordered page images.

        Args:
            blob: Raw document bytes
            content_type: MIME type; sniffed from the bytes when omitted
            label: Prefix for debug image names (e.g. "doc-42")

        Returns:
            Page images in page order

        Raises:
            UnsupportedFormat: content type is neither PDF nor image
            ExternalToolFailure: pdftoppm failed or produced unusable output
        """
        content_type = (content_type or detect_content_type(blob)).split(";")[0].strip().lower()

        if content_type == PDF_CONTENT_TYPE:
            pages = self._rasterize_pdf(blob)
        elif content_type in IMAGE_EXTENSIONS:
            pages = [PageImage(page_number=1, data=blob, media_type=content_type)]
        else:
            raise UnsupportedFormat(f"unsupported content type: {content_type}")

        if self.debug_dir is not None:
            self._write_debug_images(pages, label or "document")

        return pages

    def _rasterize_pdf(self, blob: bytes) -> List[PageImage]:
        expected_pages = count_pdf_pages(blob)

        with tempfile.TemporaryDirectory(prefix="pdf-convert-") as tmp_dir:
            pdf_path = Path(tmp_dir) / "document.pdf"
            pdf_path.write_bytes(blob)
            output_prefix = Path(tmp_dir) / "page"

            cmd = [
                self.pdftoppm,
                "-jpeg",
                "-jpegopt", f"quality={self.jpeg_quality}",
                "-gray",
                "-scale-to", str(self.scale_to),
                str(pdf_path),
                str(output_prefix),
            ]
            try:
                result = subprocess.run(cmd, capture_output=True)
            except OSError as e:
                raise ExternalToolFailure(f"running {self.pdftoppm}: {e}") from e

            if result.returncode != 0:
                output = (result.stderr or result.stdout or b"").decode("utf-8", "replace").strip()
                raise ExternalToolFailure(
                    f"{self.pdftoppm} exited with status {result.returncode}: {output}"
                )

            numbered = []
            for path in Path(tmp_dir).glob("page-*.jpg"):
                match = _PAGE_FILE_RE.search(path.name)
                if match:
                    numbered.append((int(match.group(1)), path))
            numbered.sort()

            pages = [
                PageImage(page_number=number, data=path.read_bytes(), media_type="image/jpeg")
                for number, path in numbered
            ]

        if not pages:
            raise ExternalToolFailure(f"{self.pdftoppm} produced no page images")
        if expected_pages is not None and expected_pages != len(pages):
            raise ExternalToolFailure(
                f"{self.pdftoppm} produced {len(pages)} images for a {expected_pages}-page PDF"
            )

        logger.debug(f"Rasterized {len(pages)} page(s)")
        return pages

    def _write_debug_images(self, pages: List[PageImage], label: str) -> None:
        """Save copies of page images for inspection."""
        try:
            self.debug_dir.mkdir(parents=True, exist_ok=True)
            for page in pages:
                ext = IMAGE_EXTENSIONS.get(page.media_type, ".img")
                debug_path = self.debug_dir / f"{label}-page-{page.page_number:02d}{ext}"
                debug_path.write_bytes(page.data)
        except OSError as e:
            if self.debug_strict:
                raise ExternalToolFailure(f"writing debug images to {self.debug_dir}: {e}") from e
            logger.warning(f"Could not write debug images to {self.debug_dir}: {e}")
