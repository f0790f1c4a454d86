"""Heuristic field extraction for identity document OCR text.

Extracts the national ID number (IDNP), birth date, and first/last
names from unstructured Tesseract output using regex patterns, label
keywords and an uppercase-token fallback.
"""

import re
from datetime import datetime

from idscan.models import IDData, utc_now
from idscan.utils.logger import get_logger

logger = get_logger(__name__)

# 13 digits, either contiguous or grouped 4+4+5 by single spaces
_IDNP_PATTERN = re.compile(r"\b(\d{13}|\d{4} ?\d{4} ?\d{5})\b", re.ASCII)

_DATE_PATTERN = re.compile(
    r"\b(\d{2}[./]\d{2}[./]\d{4}|\d{4}-\d{2}-\d{2})\b", re.ASCII
)

_NAME_TOKEN_PATTERN = re.compile(r"\b[A-Z][A-Z]+\b", re.ASCII)

_LABEL_SPLIT_PATTERN = re.compile(r":\s*")

FIRST_NAME_LABELS: frozenset[str] = frozenset({"PRENUME", "FIRST NAME", "GIVEN NAME"})

# "NUME" is also a substring of "PRENUME"
LAST_NAME_LABELS: frozenset[str] = frozenset(
    {"NUME", "LAST NAME", "SURNAME", "FAMILY NAME"}
)

ID_DOCUMENT_STOPWORDS: frozenset[str] = frozenset(
    {
        "IDENTITY",
        "CARD",
        "PASSPORT",
        "REPUBLIC",
        "MOLDOVA",
        "ROMANIA",
        "ISSUED",
        "DATE",
        "BIRTH",
        "SEX",
        "NATIONALITY",
        "VALID",
        "BULETINUL",
        "ACTE",
        "IDENTITATE",
    }
)

_MIN_NAME_LENGTH = 3


def _has_label(line_upper: str, labels: frozenset[str]) -> bool:
    return any(label in line_upper for label in labels)


def _label_value(line: str) -> str:
    """Return the trimmed text after the first colon, or an empty string."""
    parts = _LABEL_SPLIT_PATTERN.split(line, maxsplit=1)
    if len(parts) < 2:
        return ""
    return parts[1].strip()


def is_stopword(token: str) -> bool:
    """Check whether a token is a common identity document keyword."""
    return token.upper() in ID_DOCUMENT_STOPWORDS


def extract_idnp(text: str) -> str:
    """Return the first 13-digit personal number with spaces removed."""
    match = _IDNP_PATTERN.search(text)
    return match.group(0).replace(" ", "") if match else ""


def extract_birth_date(text: str) -> str:
    """Return the first ``DD.MM.YYYY``, ``DD/MM/YYYY`` or ``YYYY-MM-DD`` date."""
    match = _DATE_PATTERN.search(text)
    return match.group(0) if match else ""


def extract_labeled_names(lines: list[str]) -> tuple[str, str]:
    """Extract names from ``LABEL: value`` lines.

    Lines are scanned in order and each line fills at most one field.
    The first-name labels are tested before the last-name labels, and a
    label for a field that is already filled is ignored, so a line such
    as ``PRENUME: ION`` can still fill the last name once the first name
    is known.

    Args:
        lines: Lines of the raw OCR text.

    Returns:
        Tuple of (first_name, last_name); either may be empty.
    """
    first_name = ""
    last_name = ""

    for raw_line in lines:
        line = raw_line.strip()
        line_upper = line.upper()

        if not first_name and _has_label(line_upper, FIRST_NAME_LABELS):
            value = _label_value(line)
            if value:
                first_name = value
                continue

        if not last_name and _has_label(line_upper, LAST_NAME_LABELS):
            value = _label_value(line)
            if value:
                last_name = value

    return first_name, last_name


def extract_name_candidates(text: str) -> list[str]:
    """Return uppercase tokens that may be names, in document order."""
    return [
        token
        for token in _NAME_TOKEN_PATTERN.findall(text)
        if len(token) >= _MIN_NAME_LENGTH and not is_stopword(token)
    ]


def parse_id_data(raw_text: str, captured_at: datetime | None = None) -> IDData:
    """Parse structured identity fields from raw OCR text.

    The result depends only on ``raw_text`` and ``captured_at``. Fields
    that no heuristic matches are left as empty strings.

    Args:
        raw_text: Unmodified text recognized by the OCR engine.
        captured_at: Extraction time. Defaults to the current UTC time.

    Returns:
        Extracted identity data.
    """
    lines = raw_text.split("\n")
    text = " ".join(lines)

    idnp = extract_idnp(text)
    birth_date = extract_birth_date(text)
    first_name, last_name = extract_labeled_names(lines)

    if not first_name or not last_name:
        candidates = extract_name_candidates(text)
        if len(candidates) >= 2:
            last_name = last_name or candidates[0]
            first_name = first_name or candidates[1]

    logger.debug(
        "Parsed fields: idnp=%s birth_date=%s first_name=%s last_name=%s",
        bool(idnp),
        bool(birth_date),
        bool(first_name),
        bool(last_name),
    )
    return IDData(
        first_name=first_name,
        last_name=last_name,
        birth_date=birth_date,
        idnp=idnp,
        raw_text=raw_text,
        timestamp=captured_at or utc_now(),
    )
