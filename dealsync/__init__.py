"""
Gmail and Drive sync ingestion for deal registration imports.
"""

__version__ = "1.0.0"
