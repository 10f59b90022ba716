"""Member extraction from search result pages.

Two tiers, tried in order:

* Tier A reads structured result containers (cards, listings) out of the page
  HTML. Each container maps to at most one member, so fields cannot bleed
  between members.
* Tier B is a best-effort scan over the page's visible text lines, used only
  when Tier A finds nothing. An email address marks the start of a member and
  nearby lines are matched against field patterns. Adjacent members on an
  irregular page can swap fields; that imprecision is accepted.

The tiers recognize different designations: Tier A matches any of
``DESIGNATION_REGEX`` anywhere in a container, while Tier B only takes a line
that is exactly one of ``DESIGNATIONS``.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence

from bs4 import BeautifulSoup
from bs4.element import Tag

from .models import MemberRecord
from .selectors import SelectorSpec, first_match
from .validation import EMAIL_REGEX

CONTAINER_SELECTORS = [
    SelectorSpec(".member-card"),
    SelectorSpec(".search-result"),
    SelectorSpec(".member-listing"),
    SelectorSpec("[data-member]"),
    SelectorSpec(".member"),
    SelectorSpec(".listing-item"),
    SelectorSpec(".result-item"),
    SelectorSpec(".card"),
]
NAME_SELECTORS = [
    SelectorSpec(css) for css in (".name", ".member-name", "h3", "h2", "h4", ".title")
]
COMPANY_SELECTORS = [SelectorSpec(css) for css in (".company", ".business", ".organization")]
PHONE_SELECTORS = [SelectorSpec(css) for css in (".phone", 'a[href^="tel:"]')]
ADDRESS_SELECTORS = [SelectorSpec(css) for css in (".address", ".location")]
DESIGNATION_SELECTORS = [SelectorSpec(".designation")]
WEBSITE_SELECTORS = [SelectorSpec(css) for css in (".website a[href]", 'a[href^="http"]')]

PHONE_REGEX = re.compile(
    r"(\+61\s?\d(?:\s?\d){8}|\(\d{2}\)\s?\d{4}\s?\d{4}|\b0\d\s?\d{4}\s?\d{4}\b|\b\d{10}\b)"
)
STATE_REGEX = re.compile(r"(?<![A-Za-z])(NSW|VIC|QLD|SA|WA|TAS|NT|ACT)(?![A-Za-z])")
URL_REGEX = re.compile(r"(https?://[^\s]+|www\.[^\s]+)")
NAME_REGEX = re.compile(r"^[A-Z][a-z]+(?:\s[A-Z]\.?\s?[a-z]*)*\s[A-Z][a-z]+$")
DESIGNATION_REGEX = re.compile(r"\b(FCA|FCPA|FCCA|ACCA|CPA|CTA|CA)\b")

DESIGNATIONS = frozenset({"CA", "FCA", "CPA", "FCPA"})
COMPANY_KEYWORDS = (
    "Pty Ltd",
    "& Associates",
    "Limited",
    "Partners",
    "Group",
    "Accounting",
    "Advisory",
    "Chartered",
)
BOILERPLATE_KEYWORDS = ("Skip to", "STEP", "Load More", "Toggle", "Filter", "Sort by")
NAME_WINDOW = 8
NAME_MIN_LENGTH = 6
NAME_MAX_LENGTH = 59
COMPANY_MAX_LENGTH = 99


def split_name(full_name: str) -> tuple[str, str, str]:
    """Split a display name into (first, middle, last)."""
    parts = full_name.split()
    if not parts:
        return "", "", ""
    if len(parts) == 1:
        return parts[0], "", ""
    return parts[0], " ".join(parts[1:-1]), parts[-1]


def find_email(text: str) -> str | None:
    match = EMAIL_REGEX.search(text or "")
    return match.group(0) if match else None


def _has_url_marker(line: str) -> bool:
    return "@" in line or "http" in line or "www" in line


def is_company_line(line: str) -> bool:
    return (
        any(keyword in line for keyword in COMPANY_KEYWORDS)
        and len(line) <= COMPANY_MAX_LENGTH
        and not _has_url_marker(line)
    )


def is_name_line(line: str) -> bool:
    if _has_url_marker(line) or not NAME_MIN_LENGTH <= len(line) <= NAME_MAX_LENGTH:
        return False
    if is_company_line(line) or STATE_REGEX.search(line):
        return False
    return NAME_REGEX.match(line) is not None


def is_address_line(line: str) -> bool:
    return "@" not in line and STATE_REGEX.search(line) is not None


def find_phone(text: str) -> str:
    match = PHONE_REGEX.search(text or "")
    return match.group(1) if match else ""


def find_website(text: str) -> str | None:
    match = URL_REGEX.search(text or "")
    return match.group(1) if match else None


def build_record(
    *,
    email: str,
    name: str = "",
    company: str = "",
    address: str = "",
    phone: str = "",
    designation: str = "",
    website: str | None = None,
) -> MemberRecord:
    first, middle, last = split_name(name)
    return MemberRecord(
        email=email,
        name=name,
        preferred_name=first,
        first_name=first,
        middle_name=middle,
        last_name=last,
        company=company,
        business_address=address,
        phone=phone,
        website=website,
        designation=designation,
    )


# Tier A: structured containers


def _select_text(container: Tag, specs: Sequence[SelectorSpec]) -> str:
    def probe(spec: SelectorSpec) -> str:
        element = container.select_one(spec.css)
        return element.get_text(" ", strip=True) if element is not None else ""

    hit = first_match(specs, probe)
    return hit.value if hit else ""


def _select_link(container: Tag, specs: Sequence[SelectorSpec]) -> str | None:
    def probe(spec: SelectorSpec) -> str:
        element = container.select_one(spec.css)
        href = element.get("href") if element is not None else None
        return str(href).strip() if href else ""

    hit = first_match(specs, probe)
    return hit.value if hit else None


def _first_line(lines: Iterable[str], predicate) -> str:
    for line in lines:
        if predicate(line):
            return line
    return ""


def _record_from_container(container: Tag) -> MemberRecord | None:
    text = container.get_text("\n", strip=True)
    email = find_email(text)
    if email is None:
        return None
    lines = [line.strip() for line in text.splitlines() if line.strip()]

    name = _select_text(container, NAME_SELECTORS) or _first_line(lines, is_name_line)
    company = _select_text(container, COMPANY_SELECTORS) or _first_line(lines, is_company_line)
    phone = _select_text(container, PHONE_SELECTORS)
    phone = find_phone(phone) or phone or find_phone(text)
    address = _select_text(container, ADDRESS_SELECTORS) or _first_line(lines, is_address_line)
    designation = _select_text(container, DESIGNATION_SELECTORS)
    if not designation:
        match = DESIGNATION_REGEX.search(text)
        designation = match.group(1) if match else ""
    website = _select_link(container, WEBSITE_SELECTORS) or find_website(text)

    return build_record(
        email=email,
        name=name,
        company=company,
        address=address,
        phone=phone,
        designation=designation,
        website=website,
    )


def extract_from_containers(html: str) -> list[MemberRecord]:
    """Tier A: records from the first container selector that matches anything."""
    soup = BeautifulSoup(html or "", "html.parser")
    hit = first_match(CONTAINER_SELECTORS, lambda spec: soup.select(spec.css))
    if hit is None:
        return []
    records: list[MemberRecord] = []
    for container in hit.value:
        record = _record_from_container(container)
        if record is not None:
            records.append(record)
    return records


# Tier B: visible text lines


def clean_lines(lines: Iterable[str]) -> list[str]:
    """Trim lines and drop blanks and navigation boilerplate."""
    output: list[str] = []
    for raw in lines:
        line = raw.strip()
        if not line or any(keyword in line for keyword in BOILERPLATE_KEYWORDS):
            continue
        output.append(line)
    return output


def _name_before(lines: Sequence[str], index: int) -> str:
    for position in range(index - 1, max(0, index - NAME_WINDOW) - 1, -1):
        if is_name_line(lines[position]):
            return lines[position]
    return ""


def extract_from_lines(raw_lines: Iterable[str]) -> list[MemberRecord]:
    """Tier B: records from flattened page text.

    An email starts a new record. The name comes from the closest name-shaped
    line in the preceding window; every other field takes the first matching
    line from the email line up to the next email.
    """
    lines = clean_lines(raw_lines)
    records: list[MemberRecord] = []
    current: dict[str, str] | None = None

    def flush() -> None:
        if current and current.get("email"):
            records.append(
                build_record(
                    email=current["email"],
                    name=current.get("name", ""),
                    company=current.get("company", ""),
                    address=current.get("address", ""),
                    phone=current.get("phone", ""),
                    designation=current.get("designation", ""),
                    website=current.get("website") or None,
                )
            )

    for index, line in enumerate(lines):
        email = find_email(line)
        if email is not None:
            flush()
            current = {"email": email, "name": _name_before(lines, index)}
        if current is None:
            continue

        if "phone" not in current:
            phone = find_phone(line)
            if phone:
                current["phone"] = phone
        if "address" not in current and is_address_line(line):
            current["address"] = line
        if "company" not in current and is_company_line(line):
            current["company"] = line
        if "designation" not in current and line in DESIGNATIONS:
            current["designation"] = line
        if "website" not in current:
            website = find_website(line)
            if website:
                current["website"] = website

    flush()
    return records


def dedupe_by_email(records: Iterable[MemberRecord]) -> list[MemberRecord]:
    """Dedupe records by email while preserving first-seen order."""
    output: list[MemberRecord] = []
    seen: set[str] = set()
    for record in records:
        key = record.email.lower()
        if key in seen:
            continue
        seen.add(key)
        output.append(record)
    return output


def extract_members(html: str, visible_text: str | None = None) -> list[MemberRecord]:
    """Extract members from a results page, falling back to the text scan."""
    records = extract_from_containers(html)
    if not records:
        if visible_text is None:
            visible_text = BeautifulSoup(html or "", "html.parser").get_text("\n")
        records = extract_from_lines(visible_text.splitlines())
    return dedupe_by_email(records)
