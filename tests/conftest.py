"""
Pytest Configuration and Centralized Fixtures.

Provides reusable fixtures for testing:
- Controllable clock
- In-memory and failing blob stores
- Card store, rate limiter, access controller, redemption engine
- Wired gift card service (standard and admin)
- API test client with service override
"""

import os
from collections.abc import Iterator
from datetime import UTC, datetime, timedelta
from uuid import uuid4

import pytest

# Set required environment variables BEFORE importing app modules
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("LOG_FORMAT", "console")

from argon2 import PasswordHasher
from fastapi.testclient import TestClient

from giftcards.db.blob_store import MemoryBlobStore
from giftcards.models.domain import Card
from giftcards.services.access_control import AccessController
from giftcards.services.card_store import CardStore
from giftcards.services.code_generator import CodeGenerator
from giftcards.services.giftcards import GenerationPolicy, GiftCardService
from giftcards.services.rate_limiter import RateLimiter
from giftcards.services.redemption import RedemptionEngine, RedemptionPolicy

ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = "admin123"
GENERATION_KEY = "gen-key-for-tests"
UNLOCK_CODE = "0000-0000-0000-0000"
START_TIME = datetime(2026, 1, 15, 12, 0, 0, tzinfo=UTC)


# ============================================================================
# Clock & Storage Fixtures
# ============================================================================


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, now: datetime = START_TIME) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now = self.now + delta


class FailingBlobStore(MemoryBlobStore):
    """Memory blob store whose writes can be switched to fail."""

    def __init__(self) -> None:
        super().__init__()
        self.fail_writes = False
        self.save_calls = 0

    def save(self, key: str, payload: str) -> None:
        self.save_calls += 1
        if self.fail_writes:
            raise OSError("disk full")
        super().save(key, payload)


class SequenceCodeGenerator:
    """Code generator returning a fixed sequence, repeating the last code."""

    def __init__(self, codes: list[str]) -> None:
        self.codes = list(codes)
        self.calls = 0

    def generate(self) -> str:
        code = self.codes[min(self.calls, len(self.codes) - 1)]
        self.calls += 1
        return code


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def blob_store() -> FailingBlobStore:
    return FailingBlobStore()


# ============================================================================
# Credential Fixtures
# ============================================================================


@pytest.fixture(scope="session")
def admin_password_hash() -> str:
    return PasswordHasher().hash(ADMIN_PASSWORD)


@pytest.fixture(scope="session")
def generation_key_hash() -> str:
    return PasswordHasher().hash(GENERATION_KEY)


# ============================================================================
# Component Fixtures
# ============================================================================


@pytest.fixture
def card_store(blob_store: FailingBlobStore, clock: FakeClock) -> CardStore:
    store = CardStore(blob_store, clock=clock)
    store.reload()
    return store


@pytest.fixture
def rate_limiter(clock: FakeClock) -> RateLimiter:
    return RateLimiter(clock=clock)


@pytest.fixture
def access(
    card_store: CardStore, admin_password_hash: str, generation_key_hash: str
) -> AccessController:
    return AccessController(
        threshold=10,
        initial_counter=card_store.escalation_counter,
        persist_counter=card_store.set_escalation_counter,
        admin_email=ADMIN_EMAIL,
        admin_password_hash=admin_password_hash,
        generation_key_hash=generation_key_hash,
    )


@pytest.fixture
def redemption_policy() -> RedemptionPolicy:
    return RedemptionPolicy(unlock_code=UNLOCK_CODE, max_attempts=10)


@pytest.fixture
def engine(
    card_store: CardStore,
    access: AccessController,
    rate_limiter: RateLimiter,
    redemption_policy: RedemptionPolicy,
    clock: FakeClock,
) -> RedemptionEngine:
    return RedemptionEngine(card_store, access, rate_limiter, redemption_policy, clock=clock)


@pytest.fixture
def service(
    card_store: CardStore,
    access: AccessController,
    rate_limiter: RateLimiter,
    engine: RedemptionEngine,
    clock: FakeClock,
) -> GiftCardService:
    """Service with standard privilege."""
    return GiftCardService(
        card_store,
        access,
        rate_limiter,
        engine,
        CodeGenerator(),
        policy=GenerationPolicy(),
        clock=clock,
    )


@pytest.fixture
def admin_service(service: GiftCardService) -> GiftCardService:
    """Service with admin privilege granted."""
    service.access.grant_admin()
    return service


# ============================================================================
# Card Factories
# ============================================================================


def make_card(
    code: str = "ABCD-EFGH-JKLM-NPQR",
    amount_minor: int = 2500,
    created_at: datetime = START_TIME,
    expires_at: datetime | None = None,
    created_by: str | None = "admin",
) -> Card:
    """Factory function to create active cards."""
    return Card(
        id=uuid4(),
        code=code,
        balance_minor=amount_minor,
        original_balance_minor=amount_minor,
        created_at=created_at,
        expires_at=expires_at,
        created_by=created_by,
    )


@pytest.fixture
def active_card(card_store: CardStore) -> Card:
    """Active $25.00 card already in the store."""
    card = make_card()
    card_store.insert(card)
    return card


@pytest.fixture
def expired_card(card_store: CardStore, clock: FakeClock) -> Card:
    """Card whose expiry passed yesterday, not yet flagged."""
    card = make_card(
        code="EXPD-0000-1111-2222",
        created_at=clock.now - timedelta(days=10),
        expires_at=clock.now - timedelta(days=1),
    )
    card_store.insert(card)
    return card


# ============================================================================
# API Fixtures
# ============================================================================


@pytest.fixture
def client(service: GiftCardService) -> Iterator[TestClient]:
    """Test client whose routes use the fixture service."""
    from giftcards.api.dependencies import get_giftcard_service
    from giftcards.main import app

    app.dependency_overrides[get_giftcard_service] = lambda: service
    yield TestClient(app)
    app.dependency_overrides.clear()
