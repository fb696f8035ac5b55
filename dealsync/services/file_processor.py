"""
File processor: parses a spooled source file and imports its entities.

Vendors, deals and contacts from one file are imported in a single
transaction. Each entity gets its own savepoint so a constraint violation
on one row is reported as an issue instead of aborting the file.
"""

import asyncio
import logging
import os
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Union

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from dealsync.config import get_settings
from dealsync.core.exceptions import (
    DealSyncError,
    FileBlockedError,
    MissingStoragePathError,
    SourceFileNotFoundError,
    UnreadableFileError,
    UnsupportedFileTypeError,
    VendorApprovalDeniedError,
    VendorApprovalPendingError,
)
from dealsync.core.progress import ProgressChannel, publish
from dealsync.core.timeutils import utcnow
from dealsync.models import Contact, DealRegistration, SourceFile
from dealsync.parsers import get_parser
from dealsync.schemas.parsing import NormalizedDeal, ParserOutput
from dealsync.services.error_tracking import ErrorTrackingService
from dealsync.services.provenance import (
    track_contact_provenance,
    track_deal_provenance,
    track_vendor_provenance,
)
from dealsync.services.vendor_approval import ensure_vendor_approved

logger = logging.getLogger(__name__)

# Failures that stay scoped to one entity
ENTITY_ERRORS = (SQLAlchemyError, DealSyncError, ValueError)

SOURCE_TYPES = {
    "mbox": "email",
    "csv": "csv",
    "vtiger_csv": "csv",
    "txt": "transcript",
    "pdf": "transcript",
    "docx": "transcript",
    "transcript": "transcript",
}


# ============== Outcomes ==============

@dataclass(frozen=True)
class ImportIssue:
    entity: str  # vendor, deal, contact
    identifier: str
    reason: str  # pending_approval, denied, missing_vendor, error
    message: str


@dataclass(frozen=True)
class ImportOutcome:
    """Result of one import phase. Combined by value with ``merge``."""

    created: int = 0
    created_ids: tuple[uuid.UUID, ...] = ()
    issues: tuple[ImportIssue, ...] = ()

    def with_created(self, entity_id: uuid.UUID) -> "ImportOutcome":
        return ImportOutcome(self.created + 1, self.created_ids + (entity_id,), self.issues)

    def with_issue(self, issue: ImportIssue) -> "ImportOutcome":
        return ImportOutcome(self.created, self.created_ids, self.issues + (issue,))

    def merge(self, other: "ImportOutcome") -> "ImportOutcome":
        return ImportOutcome(
            self.created + other.created,
            self.created_ids + other.created_ids,
            self.issues + other.issues,
        )

    @property
    def errors(self) -> list[str]:
        return [issue.message for issue in self.issues]


@dataclass
class FileProcessingResult:
    source_file_id: uuid.UUID
    vendors_created: int = 0
    deals_created: int = 0
    contacts_created: int = 0
    errors: list[str] = field(default_factory=list)
    parser_warnings: list[str] = field(default_factory=list)
    parser_source_tags: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "vendorsCreated": self.vendors_created,
            "dealsCreated": self.deals_created,
            "contactsCreated": self.contacts_created,
            "errors": list(self.errors),
        }


@dataclass
class _ParsedFile:
    output: ParserOutput
    errors: list[str]
    warnings: list[str]


class FileProcessor:
    """
    Imports one source file.

    Handles:
    - File validation (scan status, storage path, readability)
    - Standardized parsing and parser issue tracking
    - Vendor approval, deal and contact creation with provenance
    - Status and progress bookkeeping on the source_files row
    """

    def __init__(
        self,
        error_tracker: Optional[ErrorTrackingService] = None,
        auto_approve: Optional[bool] = None,
    ):
        self.error_tracker = error_tracker or ErrorTrackingService()
        self.auto_approve = (
            get_settings().vendor_auto_approve if auto_approve is None else auto_approve
        )

    async def process_file(
        self,
        db: AsyncSession,
        source_file_id: Union[str, uuid.UUID],
        progress: Optional[ProgressChannel] = None,
    ) -> FileProcessingResult:
        """
        Parse and import a source file.

        Per-entity problems are reported in ``result.errors``. Anything else
        rolls back the import, marks the file failed and is re-raised.
        """
        file_id = uuid.UUID(str(source_file_id))
        started = time.perf_counter()
        metrics: dict[str, int] = {}

        source_file = await db.get(SourceFile, file_id)
        if source_file is None:
            raise SourceFileNotFoundError(file_id)

        filename = source_file.filename
        file_type = source_file.file_type
        storage_path = source_file.storage_path
        scan_status = source_file.scan_status
        base_metadata = dict(source_file.file_metadata or {})

        await self._set_status(db, file_id, "processing", {**base_metadata, "progress": 0})
        await db.commit()
        await publish(progress, 0, "processing")

        result = FileProcessingResult(source_file_id=file_id)

        try:
            self._validate_file(scan_status, storage_path)
            logger.info(f"Processing file: {filename} ({file_type})")
            await publish(progress, 10, "parsing")

            parse_start = time.perf_counter()
            parsed = await self._parse_file(storage_path, file_type, filename, base_metadata)
            metrics["parse_ms"] = _elapsed_ms(parse_start)

            result.errors.extend(f"Parser validation error: {e}" for e in parsed.errors)
            result.parser_warnings = [f"Parser warning: {w}" for w in parsed.warnings]
            result.parser_source_tags = list(parsed.output.metadata.source_tags)

            await self._record_parser_issues(db, file_id, filename, file_type, parsed)
            # Parser issues are kept even if the import below rolls back
            await db.commit()

            source_type = SOURCE_TYPES.get(file_type, "manual")

            await publish(progress, 40, "processing_vendors")
            phase_start = time.perf_counter()
            vendor_outcome, vendor_map = await self._import_vendors(
                db, file_id, parsed.output, source_type
            )
            metrics["vendor_ms"] = _elapsed_ms(phase_start)

            await publish(progress, 60, "processing_deals")
            phase_start = time.perf_counter()
            deal_outcome = await self._import_deals(
                db, file_id, parsed.output, vendor_map, source_type
            )
            metrics["deal_ms"] = _elapsed_ms(phase_start)

            await publish(progress, 80, "processing_contacts")
            phase_start = time.perf_counter()
            contact_outcome = await self._import_contacts(
                db, file_id, parsed.output, vendor_map, source_type
            )
            metrics["contact_ms"] = _elapsed_ms(phase_start)

            await db.commit()
        except Exception as e:
            logger.error(f"File processing failed for {file_id}: {e}")
            await db.rollback()
            await self._set_status(
                db,
                file_id,
                "failed",
                {**base_metadata, "progress": 0},
                error_message=str(e),
            )
            await db.commit()
            raise

        result.vendors_created = vendor_outcome.created
        result.deals_created = deal_outcome.created
        result.contacts_created = contact_outcome.created
        result.errors.extend(vendor_outcome.merge(deal_outcome).merge(contact_outcome).errors)

        await publish(progress, 100, "completed")
        await self._set_status(
            db,
            file_id,
            "completed",
            {
                **base_metadata,
                "progress": 100,
                "result": result.to_dict(),
                "parserWarnings": result.parser_warnings,
                "parserSourceTags": result.parser_source_tags,
            },
            processed_at=utcnow(),
        )
        await db.commit()

        logger.info(
            f"File processing metrics for {file_id}: total={_elapsed_ms(started)}ms "
            f"parse={metrics.get('parse_ms')}ms vendor={metrics.get('vendor_ms')}ms "
            f"deal={metrics.get('deal_ms')}ms contact={metrics.get('contact_ms')}ms "
            f"vendors={result.vendors_created} deals={result.deals_created} "
            f"contacts={result.contacts_created} errors={len(result.errors)}"
        )
        return result

    # ============== Validation and parsing ==============

    @staticmethod
    def _validate_file(scan_status: Optional[str], storage_path: Optional[str]) -> None:
        if scan_status and scan_status != "passed":
            raise FileBlockedError(scan_status)
        if not storage_path:
            raise MissingStoragePathError()
        if not os.access(storage_path, os.R_OK):
            raise UnreadableFileError(storage_path)

    async def _parse_file(
        self,
        storage_path: str,
        file_type: str,
        filename: str,
        base_metadata: dict,
    ) -> _ParsedFile:
        parser = get_parser(file_type)
        if parser is None:
            raise UnsupportedFileTypeError(file_type)

        options = {
            "file_type": file_type,
            "file_name": filename,
            "source_metadata": base_metadata.get("source"),
        }
        loop = asyncio.get_running_loop()
        output = await loop.run_in_executor(None, lambda: parser.parse(storage_path, options))
        validation = parser.validate(output)

        # Validation already repeats critical parser errors
        errors = list(dict.fromkeys(validation.errors + [e.message for e in output.errors]))
        warnings = list(dict.fromkeys(validation.warnings + [w.message for w in output.warnings]))

        logger.info(
            f"Standardized parse complete for {Path(storage_path).name}: "
            f"parser={output.metadata.parsing_method} "
            f"vendors={len(output.entities.vendors)} deals={len(output.entities.deals)} "
            f"contacts={len(output.entities.contacts)} errors={len(errors)} warnings={len(warnings)}"
        )
        return _ParsedFile(output=output, errors=errors, warnings=warnings)

    async def _record_parser_issues(
        self,
        db: AsyncSession,
        file_id: uuid.UUID,
        filename: str,
        file_type: str,
        parsed: _ParsedFile,
    ) -> None:
        issues = [(m, "error") for m in parsed.errors] + [(m, "warning") for m in parsed.warnings]
        for message, severity in issues:
            try:
                async with db.begin_nested():
                    await self.error_tracker.log_parsing_error(
                        db,
                        message=message,
                        severity=severity,
                        source_file_id=file_id,
                        file_name=filename,
                        file_type=file_type,
                    )
            except Exception as e:
                logger.warning(f"Failed to log parser {severity} for {file_id}: {e}")

    # ============== Import phases ==============

    async def _import_vendors(
        self,
        db: AsyncSession,
        file_id: uuid.UUID,
        output: ParserOutput,
        source_type: str,
    ) -> tuple[ImportOutcome, dict[str, uuid.UUID]]:
        outcome = ImportOutcome()
        vendor_map: dict[str, uuid.UUID] = {}

        for vendor in output.entities.vendors:
            name = vendor.name or vendor.normalized_name
            context = {
                "source_file_id": str(file_id),
                "detection_source": "file_processor",
                "email_domains": vendor.email_domains,
                "origin": vendor.origin,
                "metadata": {
                    "normalized_name": vendor.normalized_name,
                    "source_tags": output.metadata.source_tags,
                    "parser": output.metadata.parsing_method,
                },
            }
            try:
                async with db.begin_nested():
                    try:
                        vendor_id = await ensure_vendor_approved(
                            db,
                            name,
                            context,
                            auto_approve=self.auto_approve,
                            source_file_id=file_id,
                        )
                    except VendorApprovalPendingError as e:
                        message = f'Vendor "{name}" pending approval (review {e.review_id})'
                        logger.warning(message)
                        outcome = outcome.with_issue(ImportIssue("vendor", name, "pending_approval", message))
                        continue
                    except VendorApprovalDeniedError:
                        message = f'Vendor "{name}" denied by policy'
                        logger.warning(message)
                        outcome = outcome.with_issue(ImportIssue("vendor", name, "denied", message))
                        continue
            except ENTITY_ERRORS as e:
                logger.warning(f"Failed to resolve vendor {name}: {e}")
                outcome = outcome.with_issue(
                    ImportIssue("vendor", name, "error", f"Vendor error ({name}): {e}")
                )
                continue

            vendor_map[name] = vendor_id
            vendor_map[name.lower()] = vendor_id
            outcome = outcome.with_created(vendor_id)
            await track_vendor_provenance(db, vendor_id, vendor, file_id, source_type)

        return outcome, vendor_map

    async def _import_deals(
        self,
        db: AsyncSession,
        file_id: uuid.UUID,
        output: ParserOutput,
        vendor_map: dict[str, uuid.UUID],
        source_type: str,
    ) -> ImportOutcome:
        outcome = ImportOutcome()

        for deal in output.entities.deals:
            vendor_id = _lookup_vendor(vendor_map, deal.vendor_name)
            if vendor_id is None:
                outcome = outcome.with_issue(
                    ImportIssue(
                        "deal",
                        deal.deal_name,
                        "missing_vendor",
                        f"No vendor found for deal: {deal.deal_name}",
                    )
                )
                continue

            try:
                async with db.begin_nested():
                    record = DealRegistration(
                        vendor_id=vendor_id,
                        deal_name=deal.deal_name or "Untitled Deal",
                        deal_value=deal.deal_value or 0,
                        currency=deal.currency or "USD",
                        customer_name=deal.customer_name,
                        status=deal.status or "registered",
                        deal_stage=deal.deal_stage,
                        probability=deal.probability,
                        expected_close_date=deal.expected_close_date,
                        notes=deal.notes,
                        confidence_score=deal.confidence_score,
                        extraction_method=deal.extraction_method,
                        source_file_ids=[str(file_id)],
                        deal_metadata=_deal_metadata(file_id, deal, output),
                    )
                    db.add(record)
                    await db.flush()
                    deal_id = record.id
            except ENTITY_ERRORS as e:
                logger.warning(f"Failed to create deal {deal.deal_name}: {e}")
                outcome = outcome.with_issue(
                    ImportIssue("deal", deal.deal_name, "error", f"Deal error ({deal.deal_name}): {e}")
                )
                continue

            outcome = outcome.with_created(deal_id)
            await track_deal_provenance(db, deal_id, deal, file_id, source_type)

        return outcome

    async def _import_contacts(
        self,
        db: AsyncSession,
        file_id: uuid.UUID,
        output: ParserOutput,
        vendor_map: dict[str, uuid.UUID],
        source_type: str,
    ) -> ImportOutcome:
        outcome = ImportOutcome()

        for contact in output.entities.contacts:
            vendor_id = _lookup_vendor(vendor_map, contact.vendor_name)
            if vendor_id is None:
                outcome = outcome.with_issue(
                    ImportIssue(
                        "contact",
                        contact.name,
                        "missing_vendor",
                        f"No vendor found for contact: {contact.name}",
                    )
                )
                continue

            try:
                async with db.begin_nested():
                    record = Contact(
                        vendor_id=vendor_id,
                        name=contact.name,
                        email=contact.email,
                        phone=contact.phone,
                        role=contact.role,
                        is_primary=contact.is_primary,
                        source_file_id=file_id,
                    )
                    db.add(record)
                    await db.flush()
                    contact_id = record.id
            except ENTITY_ERRORS as e:
                logger.warning(f"Failed to create contact {contact.name}: {e}")
                outcome = outcome.with_issue(
                    ImportIssue("contact", contact.name, "error", f"Contact error ({contact.name}): {e}")
                )
                continue

            outcome = outcome.with_created(contact_id)
            await track_contact_provenance(db, contact_id, contact, file_id, source_type)

        return outcome

    # ============== Bookkeeping ==============

    @staticmethod
    async def _set_status(
        db: AsyncSession,
        file_id: uuid.UUID,
        status: str,
        metadata: dict,
        error_message: Optional[str] = None,
        processed_at=None,
    ) -> None:
        values = {"processing_status": status, "file_metadata": metadata}
        if error_message is not None:
            values["error_message"] = error_message
        if processed_at is not None:
            values["processed_at"] = processed_at
        await db.execute(update(SourceFile).where(SourceFile.id == file_id).values(**values))


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


def _lookup_vendor(vendor_map: dict[str, uuid.UUID], name: Optional[str]) -> Optional[uuid.UUID]:
    if not name:
        return None
    return vendor_map.get(name) or vendor_map.get(name.lower())


def _deal_metadata(file_id: uuid.UUID, deal: NormalizedDeal, output: ParserOutput) -> dict:
    return {
        "source_file_id": str(file_id),
        "parser": {
            "name": output.metadata.parsing_method,
            "version": output.metadata.parsing_version,
            "fileType": output.metadata.file_type,
            "sourceTags": output.metadata.source_tags,
        },
        "source_tags": deal.source_tags,
        "rfq_signals": deal.rfq_signals.model_dump() if deal.rfq_signals else None,
        "stage_hints": deal.stage_hints,
        "deal_name_features": deal.deal_name_features,
        "deal_name_candidates": deal.deal_name_candidates,
        "parser_errors": [e.model_dump(mode="json") for e in output.errors],
        "parser_warnings": [w.model_dump(mode="json") for w in output.warnings],
    }
