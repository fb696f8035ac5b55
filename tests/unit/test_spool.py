"""Tests for the spool directory writer."""
import json

from dealsync.schemas.connectors import (
    DriveFileContent,
    DriveFileSummary,
    GmailMessagePayload,
    GmailMessageSummary,
)
from dealsync.services.spool import SpoolWriter, safe_description, slugify


class TestNaming:
    def test_slugify(self):
        assert slugify("Partner Docs!") == "partner-docs"
        assert slugify("  RFQ / Quotes  ") == "rfq-quotes"
        assert slugify("") == "default"

    def test_safe_description(self):
        assert safe_description("Q3 Deal Notes (final)") == "Q3_Deal_Notes_final"
        assert safe_description("x" * 80) == "x" * 50
        assert safe_description("!!!") is None
        assert safe_description(None) is None


class TestSpoolWriter:
    def test_gmail_message_with_sidecar(self, tmp_path):
        writer = SpoolWriter(tmp_path)
        payload = GmailMessagePayload(
            summary=GmailMessageSummary(
                id="msg-1",
                threadId="t-1",
                headers={"subject": "RFQ"},
            ),
            raw="Subject: RFQ\r\n\r\nbody",
        )

        spooled = writer.write_gmail_message("rfq", payload)

        assert spooled.path == tmp_path / "gmail" / "rfq" / "msg-1.eml"
        assert spooled.path.read_text() == "Subject: RFQ\r\n\r\nbody"
        assert spooled.size == len("Subject: RFQ\r\n\r\nbody")
        sidecar = json.loads((tmp_path / "gmail" / "rfq" / "msg-1.eml.json").read_text())
        assert sidecar["connector"] == "gmail"
        assert sidecar["queryName"] == "rfq"
        assert sidecar["message"]["id"] == "msg-1"
        assert "file" not in sidecar

    def test_drive_file_name_includes_description(self, tmp_path):
        writer = SpoolWriter(tmp_path)
        content = DriveFileContent(
            summary=DriveFileSummary(
                id="doc/1",
                name="Q3 Deal Notes.gdoc",
                mimeType="application/vnd.google-apps.document",
            ),
            content=b"Vendor: Acme",
            file_extension=".txt",
        )

        spooled = writer.write_drive_file("partner-docs", content)

        assert spooled.filename == "doc_1_Q3_Deal_Notes.txt"
        assert spooled.path.parent == tmp_path / "drive" / "partner-docs"
        sidecar = json.loads(spooled.path.with_name(f"{spooled.filename}.json").read_text())
        assert sidecar["file"]["name"] == "Q3 Deal Notes.gdoc"
