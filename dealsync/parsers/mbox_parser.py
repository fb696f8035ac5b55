"""
Email parser for mbox archives and single RFC 822 messages (.eml).
"""

import mailbox
import re
from email import policy
from email.message import EmailMessage
from email.parser import BytesParser
from email.utils import getaddresses, parseaddr
from pathlib import Path
from typing import Optional

from dealsync.parsers.base import BaseParser, normalize_vendor_name, parse_money
from dealsync.schemas.parsing import (
    NormalizedContact,
    NormalizedDeal,
    NormalizedVendor,
    ParsedEntities,
    ParsingError,
    RfqSignals,
)

SUBJECT_PREFIX = re.compile(r"^\s*((re|fw|fwd|aw)\s*:\s*)+", re.IGNORECASE)

FREE_MAIL_DOMAINS = {
    "gmail.com",
    "googlemail.com",
    "yahoo.com",
    "outlook.com",
    "hotmail.com",
    "icloud.com",
    "aol.com",
    "proton.me",
    "protonmail.com",
}

QUANTITY_PATTERN = re.compile(
    r"\b\d[\d,]*\s*(?:units?|licen[cs]es?|seats?|pcs|pieces|users|nodes|servers)\b",
    re.IGNORECASE,
)
PRICE_TARGET_PATTERN = re.compile(r"[^.\n]*\b(?:target price|budget|best price|pricing)\b[^.\n]*", re.IGNORECASE)
TIMELINE_PATTERN = re.compile(r"[^.\n]*\b(?:by (?:end of|eow|eom|q[1-4])|deadline|asap|due (?:by|on))\b[^.\n]*", re.IGNORECASE)
MARGIN_PATTERN = re.compile(r"[^.\n]*\bmargins?\b[^.\n]*", re.IGNORECASE)
ACTOR_PATTERN = re.compile(r"[^.\n]*\b(?:end user|end customer|customer|reseller|distributor)\b[^.\n]*", re.IGNORECASE)

STAGE_KEYWORDS = [
    ("rfq", "rfq"),
    ("request for quote", "rfq"),
    ("quote", "quote"),
    ("proposal", "proposal"),
    ("purchase order", "closing"),
    ("po ", "closing"),
    ("registration", "registration"),
    ("renewal", "renewal"),
]


def _clean_subject(subject: str) -> str:
    return SUBJECT_PREFIX.sub("", subject or "").strip()


def _domain_vendor(address: str) -> Optional[tuple[str, str]]:
    """Company name and domain from a sender address, ignoring free mail."""
    if "@" not in address:
        return None
    domain = address.rsplit("@", 1)[1].lower().strip(">")
    if domain in FREE_MAIL_DOMAINS:
        return None
    labels = domain.split(".")
    company = labels[-2] if len(labels) >= 2 else labels[0]
    return company.replace("-", " ").title(), domain


def _body_text(message: EmailMessage) -> str:
    part = message.get_body(preferencelist=("plain", "html"))
    if part is None:
        return ""
    try:
        text = part.get_content()
    except (LookupError, UnicodeDecodeError):
        payload = part.get_payload(decode=True) or b""
        text = payload.decode("utf-8", errors="replace")
    if part.get_content_subtype() == "html":
        text = re.sub(r"<[^>]+>", " ", text)
    return text


def _unique(values: list[str]) -> list[str]:
    seen: dict[str, None] = {}
    for value in values:
        value = " ".join(value.split())
        if value:
            seen.setdefault(value, None)
    return list(seen)


class MboxParser(BaseParser):
    """One deal per message: vendor from the sender domain, name from subject."""

    name = "StandardizedMboxParser"
    version = "2.1.0"
    source_type = "email"

    def default_file_type(self, path: Path) -> str:
        return "mbox"

    def _messages(self, path: Path) -> list[EmailMessage]:
        with path.open("rb") as handle:
            head = handle.read(5)
        if head == b"From ":
            box = mailbox.mbox(str(path), factory=lambda f: BytesParser(policy=policy.default).parse(f), create=False)
            try:
                return [message for message in box if message is not None]
            finally:
                box.close()
        with path.open("rb") as handle:
            return [BytesParser(policy=policy.default).parse(handle)]

    def extract(self, path, options, errors, warnings, stats):
        entities = ParsedEntities()
        vendors: dict[str, NormalizedVendor] = {}
        contacts: dict[str, NormalizedContact] = {}
        texts: list[str] = []
        tags = {"email"}

        messages = self._messages(path)
        stats["emails_processed"] = len(messages)

        for index, message in enumerate(messages):
            location = f"message {index + 1}"
            try:
                self._extract_message(message, location, vendors, contacts, entities, texts, tags)
            except (ValueError, LookupError) as e:
                errors.append(
                    ParsingError(
                        severity="error",
                        message=f"Could not parse email: {e}",
                        location=location,
                    )
                )

        entities.vendors = list(vendors.values())
        entities.contacts = list(contacts.values())
        return entities, "\n\n".join(texts) or None, sorted(tags)

    def _extract_message(self, message, location, vendors, contacts, entities, texts, tags) -> None:
        subject = str(message.get("Subject", "") or "")
        sender_name, sender_email = parseaddr(str(message.get("From", "") or ""))
        body = _body_text(message)
        texts.append(f"{subject}\n{body}".strip())

        vendor = _domain_vendor(sender_email)
        if vendor is None:
            # Fall back to the first corporate recipient
            for _, address in getaddresses([str(message.get("To", "") or "")]):
                vendor = _domain_vendor(address)
                if vendor:
                    break
        if vendor is None:
            return

        vendor_name, domain = vendor
        normalized = normalize_vendor_name(vendor_name)
        if normalized not in vendors:
            vendors[normalized] = NormalizedVendor(
                name=vendor_name,
                normalized_name=normalized,
                email_domains=[domain],
                confidence=0.6,
                source_location=location,
            )

        if sender_email and _domain_vendor(sender_email):
            contacts.setdefault(
                sender_email.lower(),
                NormalizedContact(
                    name=sender_name or sender_email.split("@", 1)[0],
                    vendor_name=vendor_name,
                    email=sender_email,
                    role="vendor",
                    source_location=location,
                    source_tags=["email"],
                ),
            )

        deal_name = _clean_subject(subject)
        if not deal_name:
            return

        haystack = f"{subject}\n{body}"
        lowered = haystack.lower()
        signals = RfqSignals(
            quantities=_unique(QUANTITY_PATTERN.findall(haystack)),
            price_targets=_unique(PRICE_TARGET_PATTERN.findall(haystack)),
            timeline_requests=_unique(TIMELINE_PATTERN.findall(haystack)),
            margin_notes=_unique(MARGIN_PATTERN.findall(haystack)),
            actor_mentions=_unique(ACTOR_PATTERN.findall(haystack)),
        )
        stage_hints = _unique([stage for keyword, stage in STAGE_KEYWORDS if keyword in lowered])
        deal_tags = ["email"]
        if "rfq" in stage_hints:
            deal_tags.append("rfq")
            tags.add("rfq")

        money = parse_money(haystack)
        confidence = 0.5 + (0.2 if money else 0) + (0.1 if not signals.is_empty() else 0)

        entities.deals.append(
            NormalizedDeal(
                deal_name=deal_name,
                vendor_name=vendor_name,
                deal_value=money[0] if money else None,
                currency=money[1] if money else None,
                confidence_score=round(confidence, 2),
                extraction_method="regex",
                source_email_id=str(message.get("Message-ID", "") or "") or None,
                source_location=location,
                source_tags=deal_tags,
                rfq_signals=None if signals.is_empty() else signals,
                stage_hints=stage_hints,
                deal_name_features={"from_subject": True, "length": len(deal_name)},
                deal_name_candidates=_unique([deal_name, subject]),
            )
        )
