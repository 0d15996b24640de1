"""Shared fixtures: in-memory storage, seeded letters, and a workflow engine with events captured."""

from __future__ import annotations

import uuid
from unittest.mock import AsyncMock, patch

import pytest

from src.config import PricingSettings
from src.schemas.requests import AddressInput, LetterSettings, LetterSnapshot
from src.storage.memory import memory_storage
from src.workflow.engine import PhysicalLetterWorkflow
from src.workflow.identity import AccountIdentity, AnonymousSession
from src.workflow.modes import AUTHOR_APPROVAL, WorkflowMode
from src.workflow.pricing import CostCalculator

AUTHOR_ID = "author-1"


@pytest.fixture
def store():
    """(Storage, InMemoryLetterStore) pair."""
    return memory_storage()


@pytest.fixture
def make_letter(store):
    """Factory seeding a letter with the given author settings."""
    _, letters = store

    def _make(author_id: str = AUTHOR_ID, title: str = "봄날의 편지", **letter_settings) -> LetterSnapshot:
        letter = LetterSnapshot(
            id=uuid.uuid4(),
            author_id=author_id,
            title=title,
            letter_type="story",
            settings=LetterSettings(**letter_settings),
        )
        return letters.put(letter)

    return _make


@pytest.fixture
def events():
    """Capture events emitted by the engine."""
    with patch("src.workflow.engine.emit_safely", new_callable=AsyncMock) as mock_emit:
        yield mock_emit


@pytest.fixture
def make_workflow(store, events):
    """Factory for an engine over the shared in-memory store."""
    storage, _ = store

    def _make(mode: WorkflowMode = AUTHOR_APPROVAL) -> PhysicalLetterWorkflow:
        return PhysicalLetterWorkflow(
            storage,
            mode=mode,
            calculator=CostCalculator(PricingSettings()),
            delivery_days=3,
        )

    return _make


@pytest.fixture
def make_address():
    def _make(**overrides) -> AddressInput:
        data = {
            "name": "홍길동",
            "phone": "010-1234-5678",
            "postal_code": "06000",
            "address1": "서울특별시 강남구 테헤란로 123",
            "address2": "4층",
            "memo": "",
        }
        data.update(overrides)
        return AddressInput(**data)

    return _make


@pytest.fixture
def reader():
    return AnonymousSession(token="a" * 64, hashed_ip="f" * 64, user_agent="pytest")


@pytest.fixture
def other_reader():
    return AnonymousSession(token="b" * 64, hashed_ip="e" * 64, user_agent="pytest")


@pytest.fixture
def account_reader():
    return AccountIdentity(account_id="reader-42")
