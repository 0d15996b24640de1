"""Display helpers for admin notifications (Korean locale)."""

from __future__ import annotations


def format_won(value: int | None) -> str:
    """Format an integer amount as Korean won: 5500 -> "5,500원"."""
    if value is None:
        return "-"
    return f"{value:,}원"


def mask_name(name: str | None) -> str:
    """Keep the first character only: "홍길동" -> "홍***"."""
    if not name:
        return "-"
    return f"{name[0]}***"


def mask_phone(phone: str | None) -> str:
    """Hide the middle block: "010-1234-5678" -> "010-****-5678"."""
    if not phone:
        return "-"
    parts = phone.split("-")
    if len(parts) != 3:
        return "***"
    return f"{parts[0]}-{'*' * len(parts[1])}-{parts[2]}"
