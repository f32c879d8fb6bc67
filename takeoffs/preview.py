"""
First-page PNG previews for uploaded PDFs.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

import pypdfium2 as pdfium

logger = logging.getLogger(__name__)

PREVIEW_DENSITY = 150
PREVIEW_MAX_SIZE = (800, 600)
# PDF user space is 72 points per inch.
PDF_POINTS_PER_INCH = 72


def preview_path_for(pdf_path: str) -> str:
    source = Path(pdf_path)
    return str(source.with_name(f"{source.stem}-preview.png"))


def generate_pdf_preview(pdf_path: str) -> Optional[str]:
    """
    Render page 1 of `pdf_path` to a PNG written beside the source file.

    The image is rendered at PREVIEW_DENSITY DPI and shrunk to fit within
    PREVIEW_MAX_SIZE, keeping its aspect ratio.

    Returns:
        The PNG path, or None when the PDF is missing, empty or cannot be
        rendered. Failures are logged and never raised.
    """
    if not os.path.exists(pdf_path):
        logger.error("PDF file not found for preview: %s", pdf_path)
        return None

    output_path = preview_path_for(pdf_path)
    pdf = None
    try:
        pdf = pdfium.PdfDocument(pdf_path)
        if len(pdf) == 0:
            logger.warning("PDF %s has no pages; skipping preview", pdf_path)
            return None
        page = pdf[0]
        pil_image = page.render(scale=PREVIEW_DENSITY / PDF_POINTS_PER_INCH).to_pil()
        pil_image.thumbnail(PREVIEW_MAX_SIZE)
        pil_image.save(output_path, format="PNG")
        return output_path
    except Exception:
        logger.exception("Error generating PDF preview for %s", pdf_path)
        return None
    finally:
        if pdf is not None:
            pdf.close()
