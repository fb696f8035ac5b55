"""
Standardized parser output schemas.

Every parser returns a ParserOutput so the file processor can import
vendors, deals and contacts without knowing which format they came from.
"""

from datetime import date, datetime, timezone
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field

SourceType = Literal["email", "csv", "transcript", "pdf", "docx", "manual"]

FileType = Literal["mbox", "csv", "vtiger_csv", "txt", "pdf", "docx", "transcript"]

ExtractionMethod = Literal[
    "regex",
    "keyword",
    "nlp",
    "ai",
    "manual",
    "inference",
    "normalization",
    "fuzzy_match",
    "domain_match",
]


class ParsingError(BaseModel):
    severity: Literal["critical", "error", "warning", "info"] = "error"
    message: str
    location: Optional[str] = None
    context: Optional[Any] = None
    recoverable: bool = True


class ParsingWarning(BaseModel):
    message: str
    location: Optional[str] = None
    suggestion: Optional[str] = None


# ============== Entities ==============

class NormalizedVendor(BaseModel):
    """Vendor as extracted from a source file."""

    name: str
    normalized_name: str
    email_domains: list[str] = Field(default_factory=list)
    website: Optional[str] = None
    contact_name: Optional[str] = None
    contact_email: Optional[str] = None
    origin: str = "extracted"
    confidence: Optional[float] = None
    source_location: Optional[str] = None


class RfqSignals(BaseModel):
    quantities: list[str] = Field(default_factory=list)
    price_targets: list[str] = Field(default_factory=list)
    timeline_requests: list[str] = Field(default_factory=list)
    margin_notes: list[str] = Field(default_factory=list)
    actor_mentions: list[str] = Field(default_factory=list)

    def is_empty(self) -> bool:
        return not any(
            (
                self.quantities,
                self.price_targets,
                self.timeline_requests,
                self.margin_notes,
                self.actor_mentions,
            )
        )


class NormalizedDeal(BaseModel):
    """Deal as extracted from a source file. References its vendor by name."""

    deal_name: str
    vendor_name: str
    deal_value: Optional[float] = None
    currency: Optional[str] = None
    customer_name: Optional[str] = None
    status: Optional[str] = None
    deal_stage: Optional[str] = None
    probability: Optional[int] = None
    expected_close_date: Optional[date] = None
    notes: Optional[str] = None

    confidence_score: Optional[float] = None
    extraction_method: Optional[ExtractionMethod] = None
    source_email_id: Optional[str] = None
    source_location: Optional[str] = None
    source_tags: list[str] = Field(default_factory=list)
    rfq_signals: Optional[RfqSignals] = None
    stage_hints: list[str] = Field(default_factory=list)
    deal_name_features: Optional[dict] = None
    deal_name_candidates: list[str] = Field(default_factory=list)


class NormalizedContact(BaseModel):
    name: str
    vendor_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    role: Optional[str] = None
    is_primary: bool = False
    source_location: Optional[str] = None
    source_tags: list[str] = Field(default_factory=list)


# ============== Output ==============

class RecordCount(BaseModel):
    vendors: int = 0
    deals: int = 0
    contacts: int = 0
    total: int = 0


class ParserMetadata(BaseModel):
    source_type: SourceType
    file_type: FileType
    file_name: str
    file_size: Optional[int] = None
    parsing_method: str
    parsing_version: str
    parsed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    processing_time_ms: Optional[int] = None
    record_count: RecordCount = Field(default_factory=RecordCount)
    source_tags: list[str] = Field(default_factory=list)
    source_metadata: Optional[dict] = None


class ParsedEntities(BaseModel):
    vendors: list[NormalizedVendor] = Field(default_factory=list)
    deals: list[NormalizedDeal] = Field(default_factory=list)
    contacts: list[NormalizedContact] = Field(default_factory=list)


class ParserStatistics(BaseModel):
    lines_processed: Optional[int] = None
    rows_processed: Optional[int] = None
    emails_processed: Optional[int] = None
    avg_confidence: float = 0.0
    extraction_methods: dict[str, int] = Field(default_factory=dict)


class ParserOutput(BaseModel):
    """The contract every standardized parser fulfils."""

    metadata: ParserMetadata
    normalized_text: Optional[str] = None
    entities: ParsedEntities = Field(default_factory=ParsedEntities)
    errors: list[ParsingError] = Field(default_factory=list)
    warnings: list[ParsingWarning] = Field(default_factory=list)
    statistics: ParserStatistics = Field(default_factory=ParserStatistics)


class ValidationResult(BaseModel):
    is_valid: bool
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
