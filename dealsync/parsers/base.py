"""
Base class and shared helpers for standardized parsers.
"""

import logging
import re
import time
from abc import ABC, abstractmethod
from collections import Counter
from pathlib import Path
from typing import Any, Optional

from dealsync.schemas.parsing import (
    ParsedEntities,
    ParserMetadata,
    ParserOutput,
    ParserStatistics,
    ParsingError,
    ParsingWarning,
    RecordCount,
    ValidationResult,
)

logger = logging.getLogger(__name__)

LEGAL_SUFFIXES = {
    "inc",
    "incorporated",
    "llc",
    "ltd",
    "limited",
    "corp",
    "corporation",
    "co",
    "company",
    "gmbh",
    "plc",
    "sa",
    "ag",
    "bv",
    "pty",
}

CURRENCY_PATTERN = re.compile(
    r"(?P<symbol>[$€£])\s?(?P<amount>\d[\d,]*(?:\.\d+)?)\s*(?P<scale>[kKmM](?![a-zA-Z]))?"
    r"|(?P<amount2>\d[\d,]*(?:\.\d+)?)\s*(?P<scale2>[kKmM])?\s*(?P<code>USD|EUR|GBP)\b"
)

SYMBOL_CURRENCY = {"$": "USD", "€": "EUR", "£": "GBP"}


def normalize_vendor_name(name: str) -> str:
    """Lowercase, drop punctuation and trailing legal suffixes."""
    cleaned = re.sub(r"[^\w\s&-]", " ", name.lower())
    words = cleaned.split()
    while len(words) > 1 and words[-1] in LEGAL_SUFFIXES:
        words.pop()
    return " ".join(words)


def parse_money(text: str) -> Optional[tuple[float, str]]:
    """Find the first currency amount in ``text``. Returns (value, currency)."""
    match = CURRENCY_PATTERN.search(text)
    if not match:
        return None

    if match.group("amount"):
        amount, scale = match.group("amount"), match.group("scale")
        currency = SYMBOL_CURRENCY[match.group("symbol")]
    else:
        amount, scale = match.group("amount2"), match.group("scale2")
        currency = match.group("code")

    value = float(amount.replace(",", ""))
    if scale and scale.lower() == "k":
        value *= 1_000
    elif scale and scale.lower() == "m":
        value *= 1_000_000
    return value, currency


class BaseParser(ABC):
    """
    Template for standardized parsers.

    Subclasses implement ``extract`` and return entities; this class fills in
    metadata, statistics and timing so every parser's output looks the same.
    """

    name: str = "BaseParser"
    version: str = "1.0.0"
    source_type: str = "manual"

    def parse(self, file_path: str, options: Optional[dict] = None) -> ParserOutput:
        options = options or {}
        path = Path(file_path)
        started = time.perf_counter()

        errors: list[ParsingError] = []
        warnings: list[ParsingWarning] = []
        stats: dict[str, Any] = {}

        entities, normalized_text, source_tags = self.extract(path, options, errors, warnings, stats)

        record_count = RecordCount(
            vendors=len(entities.vendors),
            deals=len(entities.deals),
            contacts=len(entities.contacts),
        )
        record_count.total = record_count.vendors + record_count.deals + record_count.contacts

        confidences = [d.confidence_score for d in entities.deals if d.confidence_score is not None]
        methods = Counter(d.extraction_method for d in entities.deals if d.extraction_method)

        return ParserOutput(
            metadata=ParserMetadata(
                source_type=self.source_type,
                file_type=options.get("file_type", self.default_file_type(path)),
                file_name=options.get("file_name", path.name),
                file_size=path.stat().st_size if path.exists() else None,
                parsing_method=self.name,
                parsing_version=self.version,
                processing_time_ms=int((time.perf_counter() - started) * 1000),
                record_count=record_count,
                source_tags=source_tags,
                source_metadata=options.get("source_metadata"),
            ),
            normalized_text=normalized_text,
            entities=entities,
            errors=errors,
            warnings=warnings,
            statistics=ParserStatistics(
                avg_confidence=sum(confidences) / len(confidences) if confidences else 0.0,
                extraction_methods=dict(methods),
                **stats,
            ),
        )

    @abstractmethod
    def extract(
        self,
        path: Path,
        options: dict,
        errors: list[ParsingError],
        warnings: list[ParsingWarning],
        stats: dict[str, Any],
    ) -> tuple[ParsedEntities, Optional[str], list[str]]:
        """Return (entities, normalized_text, source_tags)."""

    def default_file_type(self, path: Path) -> str:
        return path.suffix.lstrip(".").lower() or "txt"

    def validate(self, output: ParserOutput) -> ValidationResult:
        errors: list[str] = []
        warnings: list[str] = []

        for error in output.errors:
            if error.severity == "critical" or not error.recoverable:
                errors.append(error.message)

        vendor_names = {v.name.lower() for v in output.entities.vendors}
        for deal in output.entities.deals:
            if not deal.deal_name:
                errors.append("Deal is missing a name")
            if not deal.vendor_name:
                errors.append(f"Deal '{deal.deal_name}' has no vendor")
            elif deal.vendor_name.lower() not in vendor_names:
                warnings.append(
                    f"Deal '{deal.deal_name}' references vendor '{deal.vendor_name}' "
                    "that was not extracted from this file"
                )

        if output.metadata.record_count.total == 0:
            warnings.append("No entities extracted")

        low_confidence = [
            d.deal_name
            for d in output.entities.deals
            if d.confidence_score is not None and d.confidence_score < 0.5
        ]
        if low_confidence:
            warnings.append(f"{len(low_confidence)} deal(s) extracted with low confidence")

        return ValidationResult(is_valid=not errors, errors=errors, warnings=warnings)
