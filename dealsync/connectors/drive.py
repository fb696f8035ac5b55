"""
Google Drive connector.
"""

import logging
import re
from typing import Any, Optional
from urllib.parse import parse_qs, urlparse

from googleapiclient.errors import HttpError

from dealsync.connectors.base import GoogleConnector, ServiceFactory
from dealsync.connectors.credentials import CredentialsProvider
from dealsync.core.retry import DRIVE_RATE_LIMITER, RateLimiter
from dealsync.schemas.connectors import (
    DriveFileContent,
    DriveFileSummary,
    DriveFolderListing,
    DriveSearchResult,
)

logger = logging.getLogger(__name__)

FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"
GOOGLE_DOC_MIME_TYPE = "application/vnd.google-apps.document"
GOOGLE_SHEET_MIME_TYPE = "application/vnd.google-apps.spreadsheet"

FILE_FIELDS = "id, name, mimeType, modifiedTime, createdTime, size, owners, parents, webViewLink"

# Google-native formats have to be exported rather than downloaded
EXPORT_FORMATS = {
    GOOGLE_DOC_MIME_TYPE: ("text/plain", ".txt"),
    GOOGLE_SHEET_MIME_TYPE: ("text/csv", ".csv"),
}

BINARY_EXTENSIONS = {
    "application/pdf": ".pdf",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": ".docx",
    "text/plain": ".txt",
    "text/csv": ".csv",
}

MAX_PAGE_SIZE = 50
COUNT_SAFETY_CAP = 10_000

FOLDER_ID_PATTERN = re.compile(r"/folders/([a-zA-Z0-9_-]+)")


def _escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace("'", "\\'")


class DriveConnector(GoogleConnector):
    """
    Read-only Google Drive access.

    Handles:
    - Folder browsing (root folders, folder contents, folder info)
    - Breadth-first file search across subfolders
    - Content fetch (export for Google formats, download otherwise)
    """

    api_name = "drive"
    api_version = "v3"

    def __init__(
        self,
        credentials: CredentialsProvider,
        rate_limiter: Optional[RateLimiter] = None,
        service_factory: Optional[ServiceFactory] = None,
    ):
        super().__init__(
            credentials,
            rate_limiter or DRIVE_RATE_LIMITER,
            service_factory,
        )

    async def _list(self, **params) -> dict:
        service = await self.get_service()
        return await self._call(
            lambda: service.files().list(
                supportsAllDrives=True,
                includeItemsFromAllDrives=True,
                **params,
            )
        )

    async def list_root_folders(self) -> list[DriveFileSummary]:
        response = await self._list(
            q=f"'root' in parents and mimeType='{FOLDER_MIME_TYPE}' and trashed=false",
            fields=f"files({FILE_FIELDS})",
            orderBy="name",
            pageSize=100,
        )
        return [DriveFileSummary(**f) for f in response.get("files", [])]

    async def list_folder_contents(
        self,
        folder_id: str,
        page_size: int = 100,
        page_token: Optional[str] = None,
    ) -> DriveFolderListing:
        params: dict[str, Any] = {
            "q": f"'{_escape(folder_id)}' in parents and trashed=false",
            "fields": f"nextPageToken, files({FILE_FIELDS})",
            "orderBy": "folder,name",
            "pageSize": page_size,
        }
        if page_token:
            params["pageToken"] = page_token
        response = await self._list(**params)
        return DriveFolderListing(
            files=[DriveFileSummary(**f) for f in response.get("files", [])],
            next_page_token=response.get("nextPageToken"),
        )

    async def _list_subfolders(self, folder_id: str) -> list[str]:
        folder_ids: list[str] = []
        page_token: Optional[str] = None
        while True:
            params: dict[str, Any] = {
                "q": (
                    f"'{_escape(folder_id)}' in parents "
                    f"and mimeType='{FOLDER_MIME_TYPE}' and trashed=false"
                ),
                "fields": "nextPageToken, files(id)",
                "pageSize": 100,
            }
            if page_token:
                params["pageToken"] = page_token
            response = await self._list(**params)
            folder_ids.extend(f["id"] for f in response.get("files", []))
            page_token = response.get("nextPageToken")
            if not page_token:
                return folder_ids

    @staticmethod
    def _file_query(folder_id: str, mime_types: list[str]) -> str:
        mime_filter = " or ".join(f"mimeType='{_escape(m)}'" for m in mime_types)
        return f"'{_escape(folder_id)}' in parents and trashed=false and ({mime_filter})"

    async def search_files(
        self,
        folder_id: str,
        mime_types: Optional[list[str]] = None,
        include_subfolders: bool = True,
        max_results: int = 100,
    ) -> DriveSearchResult:
        """
        Collect files under ``folder_id``, newest first per folder.

        Folders are walked breadth-first with a visited set, so shortcuts that
        loop back never cause repeated work. ``max_results`` applies across
        all folders and pages; ``truncated`` reports whether more matches may
        exist beyond the cutoff.
        """
        mime_types = mime_types or [GOOGLE_DOC_MIME_TYPE]
        files: list[DriveFileSummary] = []
        queue = [folder_id]
        processed: set[str] = set()
        truncated = False

        while queue:
            if len(files) >= max_results:
                truncated = True
                break

            current = queue.pop(0)
            if current in processed:
                continue
            processed.add(current)

            page_token: Optional[str] = None
            while True:
                remaining = max_results - len(files)
                if remaining <= 0:
                    truncated = truncated or page_token is not None
                    break

                params: dict[str, Any] = {
                    "q": self._file_query(current, mime_types),
                    "fields": f"nextPageToken, files({FILE_FIELDS})",
                    "orderBy": "modifiedTime desc",
                    "pageSize": min(MAX_PAGE_SIZE, remaining),
                }
                if page_token:
                    params["pageToken"] = page_token

                response = await self._list(**params)
                files.extend(DriveFileSummary(**f) for f in response.get("files", []))
                page_token = response.get("nextPageToken")
                if not page_token:
                    break

            if include_subfolders:
                for subfolder_id in await self._list_subfolders(current):
                    if subfolder_id not in processed:
                        queue.append(subfolder_id)

        logger.debug(
            f"Drive search in {folder_id}: {len(files)} file(s), "
            f"{len(processed)} folder(s), truncated={truncated}"
        )
        return DriveSearchResult(files=files[:max_results], truncated=truncated)

    async def get_file_count(
        self,
        folder_id: str,
        mime_types: Optional[list[str]] = None,
        include_subfolders: bool = True,
    ) -> int:
        mime_types = mime_types or [GOOGLE_DOC_MIME_TYPE]
        count = 0
        queue = [folder_id]
        processed: set[str] = set()

        while queue and count < COUNT_SAFETY_CAP:
            current = queue.pop(0)
            if current in processed:
                continue
            processed.add(current)

            page_token: Optional[str] = None
            while True:
                params: dict[str, Any] = {
                    "q": self._file_query(current, mime_types),
                    "fields": "nextPageToken, files(id)",
                    "pageSize": 1000,
                }
                if page_token:
                    params["pageToken"] = page_token
                response = await self._list(**params)
                count += len(response.get("files", []))
                page_token = response.get("nextPageToken")
                if not page_token or count >= COUNT_SAFETY_CAP:
                    break

            if include_subfolders:
                queue.extend(f for f in await self._list_subfolders(current) if f not in processed)

        return min(count, COUNT_SAFETY_CAP)

    async def get_file_summary(self, file_id: str) -> DriveFileSummary:
        service = await self.get_service()
        response = await self._call(
            lambda: service.files().get(
                fileId=file_id,
                fields=FILE_FIELDS,
                supportsAllDrives=True,
            )
        )
        return DriveFileSummary(**response)

    async def fetch_file_content(self, file_id: str) -> DriveFileContent:
        """
        Fetch a file's content.

        Google Docs export as plain text, Google Sheets as CSV; anything else
        is downloaded as-is with an extension inferred from its mime type.
        """
        summary = await self.get_file_summary(file_id)
        service = await self.get_service()

        export = EXPORT_FORMATS.get(summary.mimeType)
        if export:
            export_mime, extension = export
            content = await self._call(
                lambda: service.files().export(fileId=file_id, mimeType=export_mime)
            )
        else:
            extension = BINARY_EXTENSIONS.get(summary.mimeType, ".txt")
            content = await self._call(
                lambda: service.files().get_media(fileId=file_id, supportsAllDrives=True)
            )

        if isinstance(content, str):
            content = content.encode("utf-8")

        return DriveFileContent(summary=summary, content=content or b"", file_extension=extension)

    async def get_folder_info(self, folder_id: str) -> Optional[DriveFileSummary]:
        """Folder metadata, or None if it does not exist or is not a folder."""
        try:
            summary = await self.get_file_summary(folder_id)
        except HttpError as e:
            if e.resp.status == 404:
                return None
            raise
        if summary.mimeType != FOLDER_MIME_TYPE:
            return None
        return summary

    async def get_account_email(self) -> str:
        service = await self.get_service()
        about = await self._call(lambda: service.about().get(fields="user"))
        return (about.get("user") or {}).get("emailAddress", "")

    @staticmethod
    def parse_drive_folder_url(url: str) -> Optional[str]:
        """
        Extract a folder id from a Drive URL.

        Accepts ``https://drive.google.com/drive/folders/<id>`` (with or
        without ``/u/0``) and ``https://drive.google.com/open?id=<id>``.
        """
        try:
            parsed = urlparse(url.strip())
        except ValueError:
            return None

        if not parsed.netloc.endswith("drive.google.com"):
            return None

        match = FOLDER_ID_PATTERN.search(parsed.path)
        if match:
            return match.group(1)

        ids = parse_qs(parsed.query).get("id")
        if ids and ids[0]:
            return ids[0]
        return None
