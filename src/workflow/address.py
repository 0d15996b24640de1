"""Shipping address validation and normalization.

Pure, synchronous, side-effect free. Fields are checked in a fixed order and
the first failure raises ``ValidationError`` naming that field; nothing is
partially applied.
"""

from __future__ import annotations

import re

from src.schemas.requests import AddressInput, NormalizedAddress
from src.workflow.errors import ValidationError

NAME_MIN, NAME_MAX = 2, 50
ADDRESS1_MIN, ADDRESS1_MAX = 5, 200
ADDRESS2_MAX = 200
MEMO_MAX = 500

# 01X followed by 7 or 8 digits (Korean mobile numbers)
_MOBILE_RE = re.compile(r"^01[0-9]\d{7,8}$")
_POSTAL_RE = re.compile(r"^\d{5}$")
_NON_DIGIT_RE = re.compile(r"\D")


def normalize_phone(raw: str) -> str:
    """Validate a mobile number and return it as ``XXX-XXXX-XXXX`` (or ``XXX-XXX-XXXX``).

    Raises:
        ValidationError: If the digits do not form a mobile number.
    """
    digits = _NON_DIGIT_RE.sub("", raw or "")
    if not _MOBILE_RE.match(digits):
        raise ValidationError(
            "phone",
            "올바른 휴대폰 번호 형식을 입력해주세요. (예: 010-1234-5678 또는 01012345678)",
        )
    return f"{digits[:3]}-{digits[3:-4]}-{digits[-4:]}"


def validate_address(address: AddressInput) -> NormalizedAddress:
    """Validate and normalize a recipient address."""
    name = (address.name or "").strip()
    if not NAME_MIN <= len(name) <= NAME_MAX:
        raise ValidationError("name", f"받는 분 성함은 {NAME_MIN}-{NAME_MAX}자 이내여야 합니다.")

    phone = normalize_phone(address.phone)

    postal_code = (address.postal_code or "").strip()
    if not _POSTAL_RE.match(postal_code):
        raise ValidationError("postal_code", "우편번호는 5자리 숫자여야 합니다.")

    address1 = (address.address1 or "").strip()
    if not ADDRESS1_MIN <= len(address1) <= ADDRESS1_MAX:
        raise ValidationError("address1", f"주소는 {ADDRESS1_MIN}-{ADDRESS1_MAX}자 이내여야 합니다.")

    address2 = (address.address2 or "").strip()
    if len(address2) > ADDRESS2_MAX:
        raise ValidationError("address2", f"상세주소는 {ADDRESS2_MAX}자 이내여야 합니다.")

    memo = (address.memo or "").strip()
    if len(memo) > MEMO_MAX:
        raise ValidationError("memo", f"메모는 {MEMO_MAX}자 이내여야 합니다.")

    return NormalizedAddress(
        name=name,
        phone=phone,
        postal_code=postal_code,
        address1=address1,
        address2=address2,
        memo=memo,
    )


def validate_batch(addresses: list[AddressInput], max_recipients: int) -> list[NormalizedAddress]:
    """Validate every recipient of a multi-recipient submission.

    All-or-nothing: the first invalid recipient aborts the batch, and the
    error carries its 1-based ``index``.
    """
    if not addresses:
        raise ValidationError("recipients", "최소 1명 이상의 수신자 정보가 필요합니다.")
    if len(addresses) > max_recipients:
        raise ValidationError(
            "recipients",
            f"한 번에 최대 {max_recipients}명까지만 신청 가능합니다.",
            limit=max_recipients,
        )

    normalized: list[NormalizedAddress] = []
    for index, address in enumerate(addresses, start=1):
        try:
            normalized.append(validate_address(address))
        except ValidationError as exc:
            raise ValidationError(exc.field, f"{index}번째 수신자: {exc.message}", index=index) from exc
    return normalized
