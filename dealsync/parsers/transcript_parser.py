"""
Parser for meeting transcripts and narrative documents (txt, docx, pdf).
"""

import re
import zipfile
from pathlib import Path
from typing import Optional
from xml.etree import ElementTree

from pypdf import PdfReader

from dealsync.parsers.base import BaseParser, normalize_vendor_name, parse_money
from dealsync.schemas.parsing import (
    NormalizedContact,
    NormalizedDeal,
    NormalizedVendor,
    ParsedEntities,
    ParsingError,
    ParsingWarning,
)

LABEL_PATTERN = re.compile(r"^\s*(?P<label>[A-Za-z][A-Za-z /]{1,30}?)\s*:\s*(?P<value>.+?)\s*$")

LABELS = {
    "vendor": {"vendor", "partner", "oem", "manufacturer"},
    "deal": {"deal", "deal name", "opportunity", "project"},
    "customer": {"customer", "end user", "account", "client"},
    "value": {"value", "deal value", "amount", "budget"},
    "stage": {"stage", "deal stage"},
    "attendees": {"attendees", "participants"},
}

ATTENDEE_PATTERN = re.compile(r"^\s*(?P<name>[^(<]+?)\s*(?:[(<](?P<email>[^)>]+)[)>])?\s*$")

WORD_NS = "{http://schemas.openxmlformats.org/wordprocessingml/2006/main}"


def read_docx_text(path: Path) -> str:
    with zipfile.ZipFile(path) as archive:
        xml = archive.read("word/document.xml")
    root = ElementTree.fromstring(xml)
    paragraphs = []
    for paragraph in root.iter(f"{WORD_NS}p"):
        paragraphs.append("".join(node.text or "" for node in paragraph.iter(f"{WORD_NS}t")))
    return "\n".join(paragraphs)


def read_pdf_text(path: Path) -> str:
    reader = PdfReader(str(path))
    return "\n".join(page.extract_text() or "" for page in reader.pages)


class TranscriptParser(BaseParser):
    """
    Extracts labelled facts ("Vendor: Acme") from transcripts and notes.

    One vendor and one deal per document; attendees become contacts of the
    vendor.
    """

    name = "StandardizedTranscriptParser"
    version = "2.0.0"
    source_type = "transcript"

    def default_file_type(self, path: Path) -> str:
        suffix = path.suffix.lstrip(".").lower()
        return suffix if suffix in ("txt", "pdf", "docx") else "transcript"

    def _read_text(self, path: Path, file_type: str) -> str:
        if file_type == "docx" or path.suffix.lower() == ".docx":
            return read_docx_text(path)
        if file_type == "pdf" or path.suffix.lower() == ".pdf":
            return read_pdf_text(path)
        return path.read_text(encoding="utf-8", errors="replace")

    def extract(self, path, options, errors, warnings, stats):
        entities = ParsedEntities()
        file_type = options.get("file_type", self.default_file_type(path))

        try:
            text = self._read_text(path, file_type)
        except (OSError, ValueError, KeyError, zipfile.BadZipFile, ElementTree.ParseError) as e:
            errors.append(
                ParsingError(
                    severity="critical",
                    message=f"Could not read document text: {e}",
                    recoverable=False,
                )
            )
            return entities, None, ["transcript"]

        lines = text.splitlines()
        stats["lines_processed"] = len(lines)

        facts: dict[str, str] = {}
        for line in lines:
            match = LABEL_PATTERN.match(line)
            if not match:
                continue
            label = match.group("label").strip().lower()
            for field, names in LABELS.items():
                if label in names and field not in facts:
                    facts[field] = match.group("value")

        vendor_name = facts.get("vendor")
        if not vendor_name:
            warnings.append(
                ParsingWarning(
                    message="No vendor identified in document",
                    suggestion="Add a 'Vendor:' line to the transcript",
                )
            )
            return entities, text, ["transcript"]

        entities.vendors.append(
            NormalizedVendor(
                name=vendor_name,
                normalized_name=normalize_vendor_name(vendor_name),
                confidence=0.8,
                source_location="Vendor label",
            )
        )

        money: Optional[tuple[float, str]] = None
        if facts.get("value"):
            money = parse_money(facts["value"])
        if money is None:
            money = parse_money(text)

        deal_name = facts.get("deal")
        if deal_name or facts.get("customer"):
            deal_name = deal_name or f"{facts['customer']} - {vendor_name}"
            entities.deals.append(
                NormalizedDeal(
                    deal_name=deal_name,
                    vendor_name=vendor_name,
                    deal_value=money[0] if money else None,
                    currency=money[1] if money else None,
                    customer_name=facts.get("customer"),
                    deal_stage=facts.get("stage"),
                    confidence_score=0.8 if facts.get("deal") else 0.5,
                    extraction_method="keyword",
                    source_location=path.name,
                    source_tags=["transcript"],
                    stage_hints=[facts["stage"].lower()] if facts.get("stage") else [],
                    deal_name_candidates=[deal_name],
                )
            )

        for raw in (facts.get("attendees") or "").split(","):
            match = ATTENDEE_PATTERN.match(raw)
            if not match or not match.group("name").strip():
                continue
            entities.contacts.append(
                NormalizedContact(
                    name=match.group("name").strip(),
                    vendor_name=vendor_name,
                    email=(match.group("email") or "").strip() or None,
                    role="attendee",
                    source_location="Attendees label",
                    source_tags=["transcript"],
                )
            )

        return entities, text, ["transcript"]
