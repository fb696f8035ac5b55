"""
Spool directory writer for fetched Gmail messages and Drive files.

Layout:
    {root}/{connector}/{query_name}/{external_id}[_{description}]{ext}
    {root}/{connector}/{query_name}/{file}.json   (provenance sidecar)
"""

import json
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from dealsync.config import get_settings
from dealsync.schemas.connectors import (
    DriveFileContent,
    GmailMessagePayload,
    SourceMetadata,
)

logger = logging.getLogger(__name__)

MAX_DESCRIPTION_LENGTH = 50


def slugify(value: str) -> str:
    """Lowercase, non-alphanumerics collapsed to single dashes."""
    slug = re.sub(r"[^a-z0-9]+", "-", (value or "").lower()).strip("-")
    return slug or "default"


def safe_description(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    cleaned = re.sub(r"[^A-Za-z0-9]+", "_", value).strip("_")
    return cleaned[:MAX_DESCRIPTION_LENGTH] or None


@dataclass(frozen=True)
class SpooledFile:
    path: Path
    filename: str
    size: int
    metadata: SourceMetadata


class SpoolWriter:
    """Writes fetched content plus a JSON sidecar describing where it came from."""

    def __init__(self, root: Union[str, Path, None] = None):
        self.root = Path(root or get_settings().spool_directory)

    def _target(
        self,
        connector: str,
        query_name: str,
        external_id: str,
        extension: str,
        description: Optional[str] = None,
    ) -> Path:
        directory = self.root / connector / query_name
        directory.mkdir(parents=True, exist_ok=True)
        # Path separators in ids would escape the directory
        stem = re.sub(r"[\\/]", "_", external_id)
        suffix = safe_description(description)
        if suffix:
            stem = f"{stem}_{suffix}"
        return directory / f"{stem}{extension}"

    def _write(self, path: Path, content: bytes, metadata: SourceMetadata) -> SpooledFile:
        path.write_bytes(content)
        sidecar = path.with_name(f"{path.name}.json")
        sidecar.write_text(
            json.dumps(metadata.model_dump(exclude_none=True), indent=2, default=str),
            encoding="utf-8",
        )
        logger.debug(f"Spooled {path} ({len(content)} bytes)")
        return SpooledFile(path=path, filename=path.name, size=len(content), metadata=metadata)

    def write_gmail_message(self, query_name: str, payload: GmailMessagePayload) -> SpooledFile:
        summary = payload.summary
        metadata = SourceMetadata(
            connector="gmail",
            queryName=query_name,
            message=summary.model_dump(exclude_none=True),
        )
        path = self._target("gmail", query_name, summary.id, ".eml")
        return self._write(path, payload.raw.encode("utf-8"), metadata)

    def write_drive_file(self, query_name: str, file: DriveFileContent) -> SpooledFile:
        summary = file.summary
        metadata = SourceMetadata(
            connector="drive",
            queryName=query_name,
            file=summary.model_dump(exclude_none=True),
        )
        path = self._target(
            "drive",
            query_name,
            summary.id,
            file.file_extension,
            description=Path(summary.name).stem,
        )
        return self._write(path, file.content, metadata)
