"""Tests for src/workflow/address.py: recipient validation and phone normalization."""

from __future__ import annotations

import pytest

from src.schemas.requests import AddressInput
from src.workflow.address import normalize_phone, validate_address, validate_batch
from src.workflow.errors import ValidationError


def _address(**overrides) -> AddressInput:
    data = {
        "name": "홍길동",
        "phone": "01012345678",
        "postal_code": "06000",
        "address1": "서울특별시 강남구 테헤란로 123",
    }
    data.update(overrides)
    return AddressInput(**data)


class TestNormalizePhone:
    def test_dashed_and_bare_forms_match(self):
        assert normalize_phone("010-1234-5678") == normalize_phone("01012345678") == "010-1234-5678"

    def test_spaces_and_dots_stripped(self):
        assert normalize_phone("010 1234.5678") == "010-1234-5678"

    def test_ten_digit_mobile(self):
        assert normalize_phone("011-123-4567") == "011-123-4567"

    def test_landline_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            normalize_phone("02-1234-5678")
        assert exc_info.value.field == "phone"

    def test_empty_rejected(self):
        with pytest.raises(ValidationError):
            normalize_phone("")

    def test_too_long_rejected(self):
        with pytest.raises(ValidationError):
            normalize_phone("010-1234-56789")


class TestValidateAddress:
    def test_valid_address_normalized(self):
        result = validate_address(_address(name="  홍길동  ", phone="010-1234-5678", address2=" 101호 "))
        assert result.name == "홍길동"
        assert result.phone == "010-1234-5678"
        assert result.address2 == "101호"
        assert result.memo == ""

    def test_zip_code_alias_accepted(self):
        address = AddressInput(name="홍길동", phone="01012345678", zipCode="63000", address1="제주특별자치도 제주시")
        assert validate_address(address).postal_code == "63000"

    @pytest.mark.parametrize("name", ["홍", "", "   ", "가" * 51])
    def test_name_length(self, name):
        with pytest.raises(ValidationError) as exc_info:
            validate_address(_address(name=name))
        assert exc_info.value.field == "name"

    def test_name_bounds_inclusive(self):
        assert validate_address(_address(name="이몽")).name == "이몽"
        assert validate_address(_address(name="가" * 50)).name == "가" * 50

    @pytest.mark.parametrize("postal_code", ["1234", "123456", "abcde", ""])
    def test_postal_code(self, postal_code):
        with pytest.raises(ValidationError) as exc_info:
            validate_address(_address(postal_code=postal_code))
        assert exc_info.value.field == "postal_code"

    def test_address1_too_short(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_address(_address(address1="서울"))
        assert exc_info.value.field == "address1"

    def test_address2_too_long(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_address(_address(address2="가" * 201))
        assert exc_info.value.field == "address2"

    def test_memo_too_long(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_address(_address(memo="가" * 501))
        assert exc_info.value.field == "memo"

    def test_first_failing_field_reported(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_address(_address(name="", phone="bad", postal_code="1"))
        assert exc_info.value.field == "name"
        assert exc_info.value.to_dict()["code"] == "VALIDATION_ERROR"


class TestValidateBatch:
    def test_all_valid(self):
        result = validate_batch([_address(), _address(phone="01098765432")], max_recipients=10)
        assert [r.phone for r in result] == ["010-1234-5678", "010-9876-5432"]

    def test_empty_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_batch([], max_recipients=10)
        assert exc_info.value.field == "recipients"

    def test_too_many_recipients(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_batch([_address()] * 11, max_recipients=10)
        assert exc_info.value.details["limit"] == 10

    def test_error_carries_recipient_index(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_batch([_address(), _address(postal_code="12")], max_recipients=10)
        assert exc_info.value.field == "postal_code"
        assert exc_info.value.details["index"] == 2
        assert exc_info.value.message.startswith("2번째 수신자")
