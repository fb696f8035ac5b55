"""
Standardized parsers and the file-type registry.
"""

from typing import Optional

from dealsync.parsers.base import BaseParser, normalize_vendor_name
from dealsync.parsers.csv_parser import CSVParser
from dealsync.parsers.mbox_parser import MboxParser
from dealsync.parsers.transcript_parser import TranscriptParser

PARSER_REGISTRY: dict[str, type[BaseParser]] = {
    "csv": CSVParser,
    "vtiger_csv": CSVParser,
    "txt": TranscriptParser,
    "pdf": TranscriptParser,
    "docx": TranscriptParser,
    "transcript": TranscriptParser,
    "mbox": MboxParser,
}


def get_parser(file_type: str) -> Optional[BaseParser]:
    """Parser instance for ``file_type``, or None if unsupported."""
    parser_cls = PARSER_REGISTRY.get((file_type or "").lower())
    return parser_cls() if parser_cls else None


__all__ = [
    "BaseParser",
    "CSVParser",
    "MboxParser",
    "TranscriptParser",
    "PARSER_REGISTRY",
    "get_parser",
    "normalize_vendor_name",
]
