"""
Exception hierarchy for the sync ingestion pipeline.
"""

from typing import Optional


class DealSyncError(Exception):
    """Base exception for dealsync errors."""


# ============== Configuration ==============

class SyncConfigurationError(DealSyncError):
    """A sync configuration cannot be run as stored. Not retried."""


class SyncConfigNotFoundError(SyncConfigurationError):
    def __init__(self, message: str = "Sync configuration not found"):
        super().__init__(message)


# ============== Authorization ==============

class AuthorizationError(DealSyncError):
    """Credential problems that require the user to act."""


class TokenNotFoundError(AuthorizationError):
    def __init__(self, message: str = "Token not found or has been revoked"):
        super().__init__(message)


class TokenRefreshError(AuthorizationError):
    def __init__(
        self,
        message: str = "Failed to refresh access token. User may need to re-authorize.",
    ):
        super().__init__(message)


class OAuthServiceNotConfiguredError(AuthorizationError):
    def __init__(self, service_type: str):
        super().__init__(f"OAuth2 is not configured for service: {service_type}")
        self.service_type = service_type


class InvalidOAuthStateError(AuthorizationError):
    def __init__(self, message: str = "Invalid or expired OAuth state"):
        super().__init__(message)


class TokenEncryptionError(DealSyncError):
    """Token could not be encrypted or decrypted."""


# ============== Queue ==============

class SyncJobConflictError(DealSyncError):
    def __init__(
        self,
        message: str = "A sync job for this configuration is already in progress.",
        existing_job_id: Optional[str] = None,
    ):
        super().__init__(message)
        self.existing_job_id = existing_job_id


class SyncJobNotFoundError(DealSyncError):
    def __init__(self, job_id: str):
        super().__init__(f"Sync job not found: {job_id}")
        self.job_id = job_id


class SyncJobStateError(DealSyncError):
    """Job exists but is in the wrong state for the requested action."""


# ============== File processing ==============

class FileProcessingError(DealSyncError):
    """A source file could not be processed."""


class SourceFileNotFoundError(FileProcessingError):
    def __init__(self, file_id):
        super().__init__(f"File not found: {file_id}")
        self.file_id = file_id


class FileBlockedError(FileProcessingError):
    def __init__(self, scan_status: str):
        super().__init__(f"File blocked by security scan (status: {scan_status})")
        self.scan_status = scan_status


class MissingStoragePathError(FileProcessingError):
    def __init__(self):
        super().__init__("File has no storage_path recorded")


class UnreadableFileError(FileProcessingError):
    def __init__(self, path: str):
        super().__init__(f"File is missing or unreadable at {path}")
        self.path = path


class UnsupportedFileTypeError(FileProcessingError):
    def __init__(self, file_type: str):
        super().__init__(f"No standardized parser available for type: {file_type}")
        self.file_type = file_type


# ============== Vendor approval ==============

class VendorApprovalPendingError(DealSyncError):
    def __init__(self, vendor_name: str, review_id):
        super().__init__(f'Vendor "{vendor_name}" is pending approval')
        self.vendor_name = vendor_name
        self.review_id = review_id


class VendorApprovalDeniedError(DealSyncError):
    def __init__(self, vendor_name: str):
        super().__init__(f'Vendor "{vendor_name}" has been denied')
        self.vendor_name = vendor_name
