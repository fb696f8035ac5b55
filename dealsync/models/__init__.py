"""
SQLAlchemy models for the dealsync service.
"""

from dealsync.models.oauth_token import OAuthToken
from dealsync.models.sync import SyncConfiguration, SyncRun, SyncedItem
from dealsync.models.source_file import SourceFile
from dealsync.models.vendor import Vendor, VendorReviewItem
from dealsync.models.deal import DealRegistration, Contact
from dealsync.models.tracking import FieldProvenance, ErrorLog

__all__ = [
    "OAuthToken",
    "SyncConfiguration",
    "SyncRun",
    "SyncedItem",
    "SourceFile",
    "Vendor",
    "VendorReviewItem",
    "DealRegistration",
    "Contact",
    "FieldProvenance",
    "ErrorLog",
]
