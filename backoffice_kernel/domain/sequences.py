"""Document kinds and number formatting for allocated sequence values."""

from enum import Enum

# Suffix is zero-padded to six digits
MAX_SEQUENCE_VALUE = 999_999


class DocumentKind(str, Enum):
    ORDER = "ORDER"
    INVOICE = "INVOICE"

    @property
    def prefix(self) -> str:
        return _PREFIXES[self]


_PREFIXES = {
    DocumentKind.ORDER: "ORD",
    DocumentKind.INVOICE: "INV",
}


def format_document_number(kind: DocumentKind, year: int, value: int) -> str:
    """
    Format ``value`` as ``{PREFIX}-{year}-{suffix}``, e.g. ``INV-2025-000042``.

    Raises ValueError for values outside 1..999999 or a year outside
    1..9999.
    """
    if not 1 <= value <= MAX_SEQUENCE_VALUE:
        raise ValueError(f"Sequence value out of range: {value}")
    if not 1 <= year <= 9999:
        raise ValueError(f"Year out of range: {year}")
    return f"{DocumentKind(kind).prefix}-{year:04d}-{value:06d}"
