"""
CSV parser for deal registration exports (generic and vTiger).
"""

import csv
from datetime import date, datetime
from pathlib import Path
from typing import Any, Optional

from dealsync.parsers.base import BaseParser, normalize_vendor_name, parse_money
from dealsync.schemas.parsing import (
    NormalizedContact,
    NormalizedDeal,
    NormalizedVendor,
    ParsedEntities,
    ParsingError,
    ParsingWarning,
)

# Column aliases, compared case-insensitively with spaces/underscores folded
COLUMN_ALIASES = {
    "vendor": ["vendor", "vendor_name", "organization_name", "partner", "manufacturer"],
    "deal": ["deal_name", "deal", "opportunity_name", "opportunity", "potential_name", "project_name"],
    "value": ["deal_value", "amount", "value", "opportunity_amount"],
    "currency": ["currency", "currency_code"],
    "customer": ["customer_name", "customer", "account_name", "end_user"],
    "stage": ["deal_stage", "stage", "sales_stage"],
    "status": ["status", "registration_status"],
    "probability": ["probability", "probability_%"],
    "close_date": ["expected_close_date", "close_date", "expected_close"],
    "contact_name": ["contact_name", "contact", "contact_person"],
    "contact_email": ["contact_email", "email"],
    "contact_phone": ["contact_phone", "phone", "office_phone"],
    "contact_role": ["contact_role", "role", "title"],
    "notes": ["notes", "description"],
}

DATE_FORMATS = ("%Y-%m-%d", "%m/%d/%Y", "%d/%m/%Y", "%Y/%m/%d")


def _fold(header: str) -> str:
    return header.strip().lower().replace(" ", "_").replace("-", "_")


def _parse_date(value: str) -> Optional[date]:
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(value.strip(), fmt).date()
        except ValueError:
            continue
    return None


class CSVParser(BaseParser):
    """Maps one CSV row to a vendor, a deal and optionally a contact."""

    name = "StandardizedCSVParser"
    version = "2.0.0"
    source_type = "csv"

    def default_file_type(self, path: Path) -> str:
        return "csv"

    def _column_map(self, headers: list[str]) -> dict[str, str]:
        folded = {_fold(h): h for h in headers if h}
        mapping = {}
        for field, aliases in COLUMN_ALIASES.items():
            for alias in aliases:
                if alias in folded:
                    mapping[field] = folded[alias]
                    break
        return mapping

    def extract(self, path, options, errors, warnings, stats):
        entities = ParsedEntities()
        vendors: dict[str, NormalizedVendor] = {}

        with path.open(newline="", encoding="utf-8-sig", errors="replace") as handle:
            reader = csv.DictReader(handle)
            columns = self._column_map(reader.fieldnames or [])

            if "vendor" not in columns:
                errors.append(
                    ParsingError(
                        severity="critical",
                        message="CSV has no vendor column",
                        location="header",
                        recoverable=False,
                    )
                )
                return entities, None, ["csv"]

            rows = 0
            for line_number, row in enumerate(reader, start=2):
                rows += 1
                self._extract_row(row, columns, line_number, vendors, entities, warnings)

        stats["rows_processed"] = rows
        entities.vendors = list(vendors.values())
        return entities, None, ["csv", options.get("file_type", "csv")]

    def _extract_row(
        self,
        row: dict[str, Any],
        columns: dict[str, str],
        line_number: int,
        vendors: dict[str, NormalizedVendor],
        entities: ParsedEntities,
        warnings: list[ParsingWarning],
    ) -> None:
        def get(field: str) -> Optional[str]:
            column = columns.get(field)
            value = (row.get(column) or "").strip() if column else ""
            return value or None

        location = f"row {line_number}"
        vendor_name = get("vendor")
        if not vendor_name:
            warnings.append(ParsingWarning(message="Row has no vendor, skipped", location=location))
            return

        normalized = normalize_vendor_name(vendor_name)
        if normalized not in vendors:
            vendors[normalized] = NormalizedVendor(
                name=vendor_name,
                normalized_name=normalized,
                origin="imported",
                confidence=1.0,
                source_location=location,
            )

        deal_name = get("deal")
        if deal_name:
            value, currency = None, get("currency")
            raw_value = get("value")
            if raw_value:
                money = parse_money(raw_value)
                if money:
                    value, currency = money[0], currency or money[1]
                else:
                    try:
                        value = float(raw_value.replace(",", ""))
                    except ValueError:
                        warnings.append(
                            ParsingWarning(
                                message=f"Unreadable deal value '{raw_value}'",
                                location=location,
                            )
                        )

            probability = None
            if get("probability"):
                try:
                    probability = int(float(get("probability").rstrip("%")))
                except ValueError:
                    probability = None

            entities.deals.append(
                NormalizedDeal(
                    deal_name=deal_name,
                    vendor_name=vendor_name,
                    deal_value=value,
                    currency=currency,
                    customer_name=get("customer"),
                    status=get("status"),
                    deal_stage=get("stage"),
                    probability=probability,
                    expected_close_date=_parse_date(get("close_date")) if get("close_date") else None,
                    notes=get("notes"),
                    confidence_score=1.0,
                    extraction_method="manual",
                    source_location=location,
                    source_tags=["csv"],
                )
            )

        contact_name = get("contact_name")
        if contact_name:
            entities.contacts.append(
                NormalizedContact(
                    name=contact_name,
                    vendor_name=vendor_name,
                    email=get("contact_email"),
                    phone=get("contact_phone"),
                    role=get("contact_role"),
                    source_location=location,
                    source_tags=["csv"],
                )
            )
