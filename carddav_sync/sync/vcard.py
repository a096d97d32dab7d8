"""
vCard 3.0 codec for CardDAV records.

Converts between Contact objects and vCard text:
- encode() writes one CRLF-terminated line per populated field
- decode() reads a single record with tolerant, line-oriented matching
- decode_batch() splits concatenated records and isolates malformed ones

Only the properties the engine synchronizes are interpreted (UID, FN, N,
EMAIL, TEL, ORG, TITLE, ADR, NOTE); anything else is ignored on decode.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Optional

from carddav_sync.errors import ParseError
from carddav_sync.sync.contact import (
    Contact,
    EmailAddress,
    Organization,
    PhoneNumber,
    PostalAddress,
    generate_contact_id,
)

VCARD_VERSION = "3.0"
CRLF = "\r\n"

# Media type sent with PUT requests
VCARD_CONTENT_TYPE = "text/vcard; charset=utf-8"

# Record delimiters only count as whole lines, never inside a value
BEGIN_RE = re.compile(r"^BEGIN:VCARD[ \t]*\r?$", re.IGNORECASE | re.MULTILINE)
END_RE = re.compile(r"^END:VCARD[ \t]*\r?$", re.IGNORECASE | re.MULTILINE)

# Continuation lines start with a single space or tab (RFC 2425 folding)
FOLD_RE = re.compile(r"\r?\n[ \t]")

# Group name written before ORG/TITLE when a contact has several organizations
ORG_GROUP_PREFIX = "org"

# TYPE values that carry no information for a contact entry
GENERIC_TYPES = {"internet", "pref", "voice", "x400"}

logger = logging.getLogger(__name__)


@dataclass
class BatchDecodeResult:
    """
    Result of decoding several concatenated vCard records.

    Attributes:
        contacts: Records that decoded into valid contacts
        skipped: Number of malformed or truncated records
        dropped: Number of well-formed records without a name or email
        errors: ParseError for each skipped record
    """

    contacts: list[Contact] = field(default_factory=list)
    skipped: int = 0
    dropped: int = 0
    errors: list[ParseError] = field(default_factory=list)


# =============================================================================
# Escaping
# =============================================================================


def escape_text(value: str) -> str:
    """Escape a text value for a vCard 3.0 property."""
    return (
        value.replace("\\", "\\\\")
        .replace("\r\n", "\\n")
        .replace("\n", "\\n")
        .replace(",", "\\,")
        .replace(";", "\\;")
    )


def unescape_text(value: str) -> str:
    """Reverse escape_text(), tolerating stray backslashes."""
    result = []
    chars = iter(value)
    for char in chars:
        if char != "\\":
            result.append(char)
            continue
        nxt = next(chars, "")
        if nxt in ("n", "N"):
            result.append("\n")
        else:
            result.append(nxt)
    return "".join(result)


def split_structured(value: str) -> list[str]:
    """Split a structured value (N, ADR, ORG) on unescaped semicolons."""
    parts = []
    current = []
    escaped = False
    for char in value:
        if escaped:
            current.append("\\" + char)
            escaped = False
        elif char == "\\":
            escaped = True
        elif char == ";":
            parts.append("".join(current))
            current = []
        else:
            current.append(char)
    parts.append("".join(current))
    return [unescape_text(p).strip() for p in parts]


# =============================================================================
# Encoding
# =============================================================================


def _type_param(type_label: Optional[str]) -> str:
    return f";TYPE={type_label}" if type_label else ""


def _organization_lines(organizations: list[Organization]) -> list[str]:
    """
    ORG/TITLE lines for the populated organizations.

    A single organization is written plainly. With several, each pair is
    tied together by a group prefix (org1.ORG, org1.TITLE, ...) so a title
    stays with its own organization.
    """
    populated = [org for org in organizations if org.name or org.title]
    lines = []
    for index, org in enumerate(populated, start=1):
        prefix = f"{ORG_GROUP_PREFIX}{index}." if len(populated) > 1 else ""
        if org.name:
            lines.append(f"{prefix}ORG:{escape_text(org.name)}")
        if org.title:
            lines.append(f"{prefix}TITLE:{escape_text(org.title)}")
    return lines


def encode(contact: Contact) -> str:
    """
    Encode a Contact as vCard 3.0 text.

    Fields without a value are omitted entirely; repeated fields produce
    one line per value in input order.

    Args:
        contact: Contact to encode

    Returns:
        vCard text with CRLF line terminators
    """
    lines = ["BEGIN:VCARD", f"VERSION:{VCARD_VERSION}"]

    if contact.id:
        lines.append(f"UID:{contact.id}")

    if contact.display_name:
        lines.append(f"FN:{escape_text(contact.display_name)}")

    if contact.given_name or contact.family_name:
        family = escape_text(contact.family_name or "")
        given = escape_text(contact.given_name or "")
        lines.append(f"N:{family};{given};;;")

    for email in contact.emails:
        if email.value:
            lines.append(f"EMAIL{_type_param(email.type)}:{email.value}")

    for phone in contact.phone_numbers:
        if phone.value:
            lines.append(f"TEL{_type_param(phone.type)}:{phone.value}")

    lines.extend(_organization_lines(contact.organizations))

    for address in contact.addresses:
        if address.is_empty():
            continue
        components = [
            "",
            "",
            address.street_address or "",
            address.locality or "",
            address.region or "",
            address.postal_code or "",
            address.country or "",
        ]
        value = ";".join(escape_text(c) for c in components)
        lines.append(f"ADR{_type_param(address.type)}:{value}")

    if contact.notes:
        lines.append(f"NOTE:{escape_text(contact.notes)}")

    lines.append("END:VCARD")
    return CRLF.join(lines) + CRLF


# =============================================================================
# Decoding
# =============================================================================


def _split_property_line(line: str) -> Optional[tuple[str, str, list[str], str]]:
    """
    Split a content line into (group, name, params, value).

    The separator is the first colon outside a quoted parameter value.
    group is the lowercased prefix of names like "item1.EMAIL", or "".
    Returns None for lines without a separator.
    """
    in_quotes = False
    for index, char in enumerate(line):
        if char == '"':
            in_quotes = not in_quotes
        elif char == ":" and not in_quotes:
            head, value = line[:index], line[index + 1 :]
            segments = head.split(";")
            group, _, name = segments[0].strip().rpartition(".")
            return group.lower(), name.upper(), segments[1:], value
    return None


class _OrganizationCollector:
    """
    Pairs ORG and TITLE lines back into Organization entries.

    Grouped lines pair by group name. Ungrouped titles go to ungrouped
    organizations in file order; surplus titles become title-only entries.
    """

    def __init__(self):
        self.entries: list[Organization] = []
        self.by_group: dict[str, Organization] = {}
        self.plain: list[Organization] = []
        self.plain_titles: list[str] = []

    def _grouped(self, group: str) -> Organization:
        if group not in self.by_group:
            self.by_group[group] = Organization()
            self.entries.append(self.by_group[group])
        return self.by_group[group]

    def add_name(self, group: str, name: str) -> None:
        if group:
            self._grouped(group).name = name
        else:
            org = Organization(name=name)
            self.plain.append(org)
            self.entries.append(org)

    def add_title(self, group: str, title: str) -> None:
        if group:
            self._grouped(group).title = title
        else:
            self.plain_titles.append(title)

    def organizations(self) -> list[Organization]:
        for index, title in enumerate(self.plain_titles):
            if index < len(self.plain):
                self.plain[index].title = title
            else:
                self.entries.append(Organization(title=title))
        return [org for org in self.entries if org.name or org.title]


def _type_from_params(params: list[str]) -> Optional[str]:
    """Return the first meaningful TYPE value from the parameter segments."""
    for param in params:
        if "=" in param:
            key, _, raw = param.partition("=")
            if key.strip().upper() != "TYPE":
                continue
            values = raw.strip('"').split(",")
        else:
            # vCard 2.1 bare parameters, e.g. "EMAIL;WORK:"
            values = [param]
        for value in values:
            label = value.strip().strip('"').lower()
            if label and label not in GENERIC_TYPES:
                return label
    return None


def _locate_block(text: str) -> str:
    """Return the BEGIN:VCARD ... END:VCARD span or raise ParseError."""
    begin = BEGIN_RE.search(text)
    if begin is None:
        raise ParseError("Missing BEGIN:VCARD")
    end = END_RE.search(text, begin.end())
    if end is None:
        raise ParseError("Truncated vCard: missing END:VCARD")
    return text[begin.start() : end.end()]


def decode(text: str) -> Optional[Contact]:
    """
    Decode a single vCard record.

    Each recognized property line is matched independently, so missing or
    reordered properties never invalidate the record.

    Args:
        text: vCard text containing one record

    Returns:
        Contact, or None when the record has neither a display name nor an
        email address

    Raises:
        ParseError: If the record is structurally malformed
    """
    block = _locate_block(text)
    unfolded = FOLD_RE.sub("", block)

    uid = ""
    display_name = ""
    given_name: Optional[str] = None
    family_name: Optional[str] = None
    emails: list[EmailAddress] = []
    phones: list[PhoneNumber] = []
    organizations = _OrganizationCollector()
    addresses: list[PostalAddress] = []
    notes: Optional[str] = None

    for raw_line in unfolded.splitlines():
        line = raw_line.strip()
        if not line:
            continue
        parsed = _split_property_line(line)
        if parsed is None:
            continue
        group, name, params, value = parsed
        value = value.strip()

        if name == "UID":
            uid = value
        elif name == "FN":
            display_name = unescape_text(value).strip()
        elif name == "N":
            segments = split_structured(value)
            family_name = segments[0] or None
            given_name = segments[1] if len(segments) > 1 and segments[1] else None
        elif name == "EMAIL":
            if value:
                emails.append(EmailAddress(value=value, type=_type_from_params(params)))
        elif name == "TEL":
            if value and value not in [p.value for p in phones]:
                phones.append(PhoneNumber(value=value, type=_type_from_params(params)))
        elif name == "ORG":
            org_name = split_structured(value)[0]
            if org_name:
                organizations.add_name(group, org_name)
        elif name == "TITLE":
            title = unescape_text(value).strip()
            if title:
                organizations.add_title(group, title)
        elif name == "ADR":
            segments = split_structured(value) + [""] * 7
            address = PostalAddress(
                street_address=segments[2] or None,
                locality=segments[3] or None,
                region=segments[4] or None,
                postal_code=segments[5] or None,
                country=segments[6] or None,
                type=_type_from_params(params),
            )
            if not address.is_empty():
                addresses.append(address)
        elif name == "NOTE":
            note = unescape_text(value).strip()
            notes = note or None

    contact = Contact(
        id=uid or generate_contact_id(),
        display_name=display_name,
        given_name=given_name,
        family_name=family_name,
        emails=emails,
        phone_numbers=phones,
        organizations=organizations.organizations(),
        addresses=addresses,
        notes=notes,
    )

    if not contact.is_valid():
        logger.debug(f"Dropping vCard without name or email (uid={uid!r})")
        return None
    return contact


def split_blocks(text: str) -> list[str]:
    """
    Split text into per-record chunks on BEGIN:VCARD boundaries.

    Each chunk runs up to the next BEGIN:VCARD (or the end of the text), so
    a truncated record stays in its own chunk instead of swallowing the next.
    """
    starts = [m.start() for m in BEGIN_RE.finditer(text)]
    chunks = []
    for index, start in enumerate(starts):
        stop = starts[index + 1] if index + 1 < len(starts) else len(text)
        chunks.append(text[start:stop])
    return chunks


def decode_batch(text: str) -> BatchDecodeResult:
    """
    Decode several concatenated vCard records.

    Malformed records are counted and skipped; this function never raises.

    Args:
        text: Text containing zero or more vCard records

    Returns:
        BatchDecodeResult with decoded contacts and skip/drop counts
    """
    result = BatchDecodeResult()
    for chunk in split_blocks(text):
        decode_into(chunk, result)
    return result


def decode_into(text: str, result: BatchDecodeResult) -> Optional[Contact]:
    """
    Decode one record and record its outcome in a batch result.

    Returns:
        The decoded Contact, or None if it was skipped or dropped
    """
    try:
        contact = decode(text)
    except ParseError as e:
        logger.warning(f"Skipping malformed vCard: {e}")
        result.skipped += 1
        result.errors.append(e)
        return None

    if contact is None:
        result.dropped += 1
        return None

    result.contacts.append(contact)
    return contact
