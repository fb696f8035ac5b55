"""
Vendor approval gate used by the import pipeline.

A vendor name from a parsed file resolves to one of:
- an approved vendor (its id is returned)
- a pending or denied vendor (an approval error is raised)
- an unknown name, which is queued for review (or created outright when
  auto-approval is on)
"""

import logging
import uuid
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from dealsync.config import get_settings
from dealsync.core.exceptions import (
    VendorApprovalDeniedError,
    VendorApprovalPendingError,
)
from dealsync.core.timeutils import utcnow
from dealsync.models import Vendor, VendorReviewItem
from dealsync.parsers.base import normalize_vendor_name

logger = logging.getLogger(__name__)


async def ensure_vendor_approved(
    db: AsyncSession,
    name: str,
    context: Optional[dict] = None,
    auto_approve: Optional[bool] = None,
    source_file_id: Optional[uuid.UUID] = None,
) -> uuid.UUID:
    """
    Resolve ``name`` to an approved vendor id.

    Raises:
        VendorApprovalPendingError: vendor awaits review (new or existing)
        VendorApprovalDeniedError: vendor was denied
    """
    context = context or {}
    if auto_approve is None:
        auto_approve = get_settings().vendor_auto_approve

    normalized = normalize_vendor_name(name)

    result = await db.execute(select(Vendor).where(Vendor.normalized_name == normalized))
    vendor = result.scalar_one_or_none()

    result = await db.execute(
        select(VendorReviewItem).where(VendorReviewItem.normalized_alias == normalized)
    )
    review = result.scalar_one_or_none()

    if vendor is not None:
        if vendor.approval_status == "approved":
            return vendor.id
        if vendor.approval_status == "denied":
            raise VendorApprovalDeniedError(name)
        raise VendorApprovalPendingError(name, review_id=review.id if review else None)

    if review is not None and review.status == "denied":
        raise VendorApprovalDeniedError(name)

    if auto_approve:
        vendor = Vendor(
            name=name,
            normalized_name=normalized,
            approval_status="approved",
            email_domains=list(context.get("email_domains") or []),
            origin=context.get("origin", "extracted"),
        )
        db.add(vendor)
        await db.flush()
        if review is not None:
            review.status = "approved"
            review.resolved_vendor_id = vendor.id
        logger.info(f"Auto-approved new vendor '{name}'")
        return vendor.id

    if review is None:
        review = VendorReviewItem(
            alias_name=name,
            normalized_alias=normalized,
            status="pending",
            detection_count=1,
            latest_context=context,
            source_file_id=source_file_id,
        )
        db.add(review)
        logger.info(f"Queued unknown vendor '{name}' for review")
    else:
        review.detection_count = (review.detection_count or 0) + 1
        review.latest_context = context
        review.last_seen_at = utcnow()
        if source_file_id is not None:
            review.source_file_id = source_file_id

    await db.flush()
    raise VendorApprovalPendingError(name, review_id=review.id)
