# =============================================================================
# PDF Parser — Docling Document Intelligence
# =============================================================================
#
# Turns uploaded PDF bytes into text, page by page, using IBM's Docling.
# Tables are exported as markdown, section headings are tracked so chunks
# can carry the section they came from.
#
# Only `application/pdf` is accepted. Anything else is rejected before the
# converter is touched; a document the converter cannot read raises
# ExtractionError and nothing downstream runs.
#
# We iterate items (not export_to_markdown()) because export_to_markdown()
# drops page numbers, and every chunk needs a 1-indexed source page.
# =============================================================================

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from io import BytesIO

from docling.datamodel.base_models import DocumentStream, InputFormat
from docling.datamodel.pipeline_options import PdfPipelineOptions
from docling.document_converter import DocumentConverter, PdfFormatOption
from docling_core.types.doc.labels import DocItemLabel

from lumenfin.exceptions import ExtractionError, UnsupportedFileTypeError

logger = logging.getLogger(__name__)

PDF_MIME_TYPE = "application/pdf"


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass
class ParsedElement:
    """
    A single structural element extracted from a PDF document.

    Each element corresponds to one paragraph, heading, or table, annotated
    with its page number and section context.
    """

    text: str  # The text content (markdown for tables)
    page_number: int  # 1-indexed page; 0 when the converter gave no provenance
    element_type: str  # "text", "table", or "heading"
    section_title: str | None = None
    level: int = 0


@dataclass
class ParsedDocument:
    """All extracted elements in reading order, plus document-level facts."""

    elements: list[ParsedElement] = field(default_factory=list)
    page_count: int = 0
    filename: str = ""

    def pages(self) -> list[tuple[int, str]]:
        """
        Group element text by page, in page order.

        Elements without provenance (page 0) are attached to the page of the
        element before them, or page 1 at the start of the document. Pages
        that end up with no text are omitted.
        """
        by_page: dict[int, list[str]] = {}
        current_page = 1
        for element in self.elements:
            if element.page_number > 0:
                current_page = element.page_number
            if element.text.strip():
                by_page.setdefault(current_page, []).append(element.text)

        return [
            (page, "\n\n".join(texts))
            for page, texts in sorted(by_page.items())
        ]

    def section_for_page(self, page_number: int) -> str | None:
        """First section title seen on a page, if any."""
        return next(
            (
                e.section_title
                for e in self.elements
                if e.page_number == page_number and e.section_title
            ),
            None,
        )

    def page_has_table(self, page_number: int) -> bool:
        return any(
            e.element_type == "table" and e.page_number == page_number
            for e in self.elements
        )


# ---------------------------------------------------------------------------
# Docling Converter — Lazy Singleton
# ---------------------------------------------------------------------------
# Initialization loads layout and OCR models into memory (seconds on first
# use); one converter is reused for every document in the process.
# ---------------------------------------------------------------------------

_converter: DocumentConverter | None = None


def _get_converter() -> DocumentConverter:
    global _converter
    if _converter is None:
        logger.info("Loading Docling layout, table and OCR models (first document only)")
        # Financial statements are table-heavy; OCR covers scanned pages
        options = PdfPipelineOptions(do_table_structure=True, do_ocr=True)
        _converter = DocumentConverter(
            format_options={InputFormat.PDF: PdfFormatOption(pipeline_options=options)},
        )
    return _converter


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def validate_upload(data: bytes, mime_type: str | None) -> None:
    """
    Reject anything that is not a non-empty PDF.

    Raises:
        UnsupportedFileTypeError: Wrong declared MIME type or empty payload.
    """
    declared = (mime_type or "").split(";", 1)[0].strip().lower()
    if declared != PDF_MIME_TYPE:
        raise UnsupportedFileTypeError(mime_type)
    if not data:
        raise UnsupportedFileTypeError(mime_type, "Uploaded file is empty.")


def parse_pdf(data: bytes, filename: str, mime_type: str | None = PDF_MIME_TYPE) -> ParsedDocument:
    """
    Extract page-attributed elements from an uploaded PDF.

    Raises:
        UnsupportedFileTypeError: The upload is not a non-empty PDF.
        ExtractionError: Docling could not convert the document.
    """
    validate_upload(data, mime_type)

    logger.info("Parsing PDF: %s (%d bytes)", filename, len(data))
    try:
        result = _get_converter().convert(
            DocumentStream(name=filename, stream=BytesIO(data))
        )
    except Exception as exc:
        raise ExtractionError(f"Could not parse '{filename}': {exc}") from exc

    document = ParsedDocument(filename=filename)
    section: str | None = None
    for item, level in result.document.iterate_items():
        element = _to_element(item, level, section)
        if element is None:
            continue
        if element.element_type == "heading":
            section = element.text
            element.section_title = section
        document.elements.append(element)

    pages = {e.page_number for e in document.elements if e.page_number > 0}
    document.page_count = max(pages, default=0)

    counts = {kind: 0 for kind in ("heading", "table", "text")}
    for element in document.elements:
        counts[element.element_type] += 1
    logger.info(
        "Parsed '%s': %d headings, %d tables, %d text blocks over %d pages",
        filename, counts["heading"], counts["table"], counts["text"], document.page_count,
    )
    return document


# ---------------------------------------------------------------------------
# Item Conversion
# ---------------------------------------------------------------------------

_ELEMENT_TYPES: dict[DocItemLabel, str] = {
    DocItemLabel.TITLE: "heading",
    DocItemLabel.SECTION_HEADER: "heading",
    DocItemLabel.TABLE: "table",
    DocItemLabel.TEXT: "text",
    DocItemLabel.LIST_ITEM: "text",
    DocItemLabel.CAPTION: "text",
    DocItemLabel.FOOTNOTE: "text",
}


def _to_element(item: object, level: int, section: str | None) -> ParsedElement | None:
    """One Docling item as a ParsedElement, or None for labels we skip and empty items."""
    element_type = _ELEMENT_TYPES.get(getattr(item, "label", None))
    if element_type is None:
        return None

    if element_type == "table":
        text = _table_markdown(item)
    else:
        text = (getattr(item, "text", "") or "").strip()
    if not text:
        return None

    # prov[0] is the item's primary location; some items carry none
    provenance = getattr(item, "prov", None) or []
    page_number = provenance[0].page_no if provenance else 0

    return ParsedElement(
        text=text,
        page_number=page_number,
        element_type=element_type,
        section_title=section,
        level=level,
    )


def _table_markdown(item: object) -> str:
    """Markdown for a table via its DataFrame export, else its plain text."""
    export = getattr(item, "export_to_dataframe", None)
    if export is not None:
        try:
            return export().to_markdown(index=False)
        except Exception as exc:
            logger.warning("Table export to DataFrame failed: %s", exc)
    return (getattr(item, "text", "") or "").strip()
