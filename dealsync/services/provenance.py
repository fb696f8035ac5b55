"""
Field provenance tracking.

Records which file, location and extraction method produced each imported
field. Tracking is best effort: failures are logged and never interrupt an
import.
"""

import logging
import uuid
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from dealsync.models import FieldProvenance
from dealsync.schemas.parsing import NormalizedContact, NormalizedDeal, NormalizedVendor

logger = logging.getLogger(__name__)

VENDOR_FIELDS = ("name", "email_domains", "website")
DEAL_FIELDS = (
    "deal_name",
    "deal_value",
    "currency",
    "customer_name",
    "status",
    "deal_stage",
    "probability",
    "expected_close_date",
)
CONTACT_FIELDS = ("name", "email", "phone", "role")


def _stringify(value: Any) -> Optional[str]:
    if value is None or value == "" or value == []:
        return None
    if isinstance(value, list):
        return ", ".join(str(v) for v in value)
    return str(value)


async def _track(
    db: AsyncSession,
    entity_type: str,
    entity_id: uuid.UUID,
    values: dict[str, Any],
    source_file_id: Optional[uuid.UUID],
    source_type: str,
    source_location: Optional[str],
    extraction_method: Optional[str],
    confidence: Optional[float],
    context: Optional[dict] = None,
) -> int:
    tracked = 0
    try:
        async with db.begin_nested():
            for field_name, raw in values.items():
                value = _stringify(raw)
                if value is None:
                    continue
                db.add(
                    FieldProvenance(
                        entity_type=entity_type,
                        entity_id=entity_id,
                        field_name=field_name,
                        field_value=value,
                        source_file_id=source_file_id,
                        source_type=source_type,
                        source_location=source_location,
                        extraction_method=extraction_method or "inference",
                        confidence=confidence,
                        extraction_context=context or {},
                    )
                )
                tracked += 1
    except Exception as e:
        logger.warning(f"Failed to track provenance for {entity_type} {entity_id}: {e}")
        return 0
    return tracked


async def track_vendor_provenance(
    db: AsyncSession,
    vendor_id: uuid.UUID,
    vendor: NormalizedVendor,
    source_file_id: Optional[uuid.UUID],
    source_type: str,
) -> int:
    return await _track(
        db,
        "vendor",
        vendor_id,
        {field: getattr(vendor, field) for field in VENDOR_FIELDS},
        source_file_id,
        source_type,
        vendor.source_location,
        "normalization",
        vendor.confidence,
    )


async def track_deal_provenance(
    db: AsyncSession,
    deal_id: uuid.UUID,
    deal: NormalizedDeal,
    source_file_id: Optional[uuid.UUID],
    source_type: str,
) -> int:
    return await _track(
        db,
        "deal",
        deal_id,
        {field: getattr(deal, field) for field in DEAL_FIELDS},
        source_file_id,
        source_type,
        deal.source_location,
        deal.extraction_method,
        deal.confidence_score,
        context={"source_tags": deal.source_tags},
    )


async def track_contact_provenance(
    db: AsyncSession,
    contact_id: uuid.UUID,
    contact: NormalizedContact,
    source_file_id: Optional[uuid.UUID],
    source_type: str,
) -> int:
    return await _track(
        db,
        "contact",
        contact_id,
        {field: getattr(contact, field) for field in CONTACT_FIELDS},
        source_file_id,
        source_type,
        contact.source_location,
        "inference",
        None,
    )
