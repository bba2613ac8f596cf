"""
Card Store - Sole owner and writer of cards and redemption history.

Holds the in-memory collections and persists them as one document after
every mutation. All mutations run under one re-entrant lock, so a
check-then-set transition cannot interleave with another writer and the
redemption history reflects commit order.

Mutation pattern:
1. Capture snapshot
2. Mutate in memory
3. Persist whole document
4. On any failure, restore snapshot and re-raise
"""

import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from uuid import UUID, uuid4

from pydantic import ValidationError
from structlog import get_logger

from giftcards.db.blob_store import BlobStore
from giftcards.exceptions import (
    AlreadyRedeemedError,
    CardExpiredError,
    CardNotFoundError,
    DuplicateCodeError,
    StorageFailureError,
)
from giftcards.models.domain import (
    Card,
    CardFilter,
    CardStats,
    Origin,
    RedemptionFilter,
    RedemptionRecord,
)
from giftcards.models.snapshot import (
    StateDocument,
    card_to_document,
    document_to_card,
    document_to_record,
    record_to_document,
)
from giftcards.services.code_generator import mask_code, normalize_code

logger = get_logger(__name__)

DEFAULT_STATE_KEY = "giftcard-state"


def _utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


@dataclass(frozen=True)
class _Snapshot:
    cards: dict[UUID, Card]
    codes: dict[str, UUID]
    history: list[RedemptionRecord]
    user_balance: int
    escalation_counter: int


class CardStore:
    """In-memory card collections persisted as one blob."""

    def __init__(
        self,
        blob_store: BlobStore,
        state_key: str = DEFAULT_STATE_KEY,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._blob_store = blob_store
        self._state_key = state_key
        self._clock = clock
        self._lock = threading.RLock()
        self._cards: dict[UUID, Card] = {}
        self._codes: dict[str, UUID] = {}
        self._history: list[RedemptionRecord] = []
        self._user_balance = 0
        self._escalation_counter = 0

    # ========================================================================
    # Persistence
    # ========================================================================

    def reload(self) -> None:
        """
        Replace in-memory state with the persisted document.

        A missing document yields an empty store.

        Raises:
            StorageFailureError: Blob unreadable or document invalid
        """
        try:
            payload = self._blob_store.load(self._state_key)
        except Exception as e:
            logger.error("state_load_failed", key=self._state_key, error=str(e), exc_info=True)
            raise StorageFailureError(f"could not load state: {e}") from e

        document = StateDocument()
        cards: list[Card] = []
        history: list[RedemptionRecord] = []
        if payload is not None:
            try:
                document = StateDocument.from_json(payload)
                cards = [document_to_card(doc) for doc in document.cards]
                history = [document_to_record(doc) for doc in document.redemption_history]
            except (ValidationError, ValueError) as e:
                logger.error("state_document_invalid", key=self._state_key, error=str(e))
                raise StorageFailureError(f"invalid state document: {e}") from e

        codes = {card.code: card.id for card in cards}
        if len(codes) != len(cards):
            raise StorageFailureError("state document contains duplicate codes")

        with self._lock:
            self._cards = {card.id: card for card in cards}
            self._codes = codes
            self._history = history
            self._user_balance = document.user_balance
            self._escalation_counter = document.escalation_counter

        logger.info(
            "state_loaded",
            key=self._state_key,
            cards=len(self._cards),
            redemptions=len(self._history),
        )

    def persist(self) -> None:
        """
        Write the whole state document.

        Raises:
            StorageFailureError: Blob store rejected the write
        """
        with self._lock:
            document = StateDocument(
                cards=[card_to_document(card) for card in self._cards.values()],
                redemption_history=[record_to_document(r) for r in self._history],
                user_balance=self._user_balance,
                escalation_counter=self._escalation_counter,
            )
            try:
                self._blob_store.save(self._state_key, document.to_json())
            except Exception as e:
                logger.error(
                    "state_persist_failed", key=self._state_key, error=str(e), exc_info=True
                )
                raise StorageFailureError(f"could not save state: {e}") from e

    @contextmanager
    def _transaction(self) -> Iterator[None]:
        """Run a mutation under the store lock; roll back if it or persist fails."""
        with self._lock:
            snapshot = _Snapshot(
                cards=dict(self._cards),
                codes=dict(self._codes),
                history=list(self._history),
                user_balance=self._user_balance,
                escalation_counter=self._escalation_counter,
            )
            try:
                yield
                self.persist()
            except Exception:
                self._cards = snapshot.cards
                self._codes = snapshot.codes
                self._history = snapshot.history
                self._user_balance = snapshot.user_balance
                self._escalation_counter = snapshot.escalation_counter
                raise

    # ========================================================================
    # Mutations
    # ========================================================================

    def insert(self, card: Card) -> None:
        """
        Add a new card.

        Raises:
            DuplicateCodeError: Code already present (caller regenerates)
            StorageFailureError: Persist failed, card not added
        """
        code = normalize_code(card.code)
        with self._transaction():
            if code in self._codes:
                raise DuplicateCodeError(code)
            if code != card.code:
                card = replace(card, code=code)
            self._cards[card.id] = card
            self._codes[code] = card.id

        logger.info(
            "giftcard_inserted",
            card_id=str(card.id),
            code=mask_code(code),
            amount_minor=card.original_balance_minor,
        )

    def mark_redeemed(
        self,
        card_id: UUID,
        redeemer_identity: str | None,
        timestamp: datetime,
        origin: Origin | None = None,
    ) -> RedemptionRecord:
        """
        Atomically transition a card to redeemed and append its record.

        The card amount is credited to the wallet balance in the same step.

        Raises:
            CardNotFoundError: Unknown card id
            AlreadyRedeemedError: Card redeemed by an earlier commit
            CardExpiredError: Card already flagged expired
            StorageFailureError: Persist failed, nothing changed
        """
        with self._transaction():
            card = self._cards.get(card_id)
            if card is None:
                raise CardNotFoundError(card_id)
            if card.redeemed:
                raise AlreadyRedeemedError(card_id)
            if card.expired:
                raise CardExpiredError(card_id)

            self._cards[card_id] = replace(
                card,
                redeemed=True,
                redeemed_at=timestamp,
                redeemed_by=redeemer_identity,
            )
            record = RedemptionRecord(
                id=uuid4(),
                card_id=card_id,
                amount_minor=card.balance_minor,
                redeemed_at=timestamp,
                redeemer_identity=redeemer_identity,
                origin=origin or Origin(),
            )
            self._history.append(record)
            self._user_balance += card.balance_minor

        return record

    def mark_expired(self, card_id: UUID) -> None:
        """
        Flag a card expired. Idempotent.

        Raises:
            CardNotFoundError: Unknown card id
            StorageFailureError: Persist failed, flag not set
        """
        with self._lock:
            card = self._cards.get(card_id)
            if card is None:
                raise CardNotFoundError(card_id)
            if card.expired or card.redeemed:
                return
            with self._transaction():
                self._cards[card_id] = replace(card, expired=True)

        logger.info("giftcard_expired", card_id=str(card_id))

    def set_escalation_counter(self, count: int) -> None:
        """Persist the access controller's escalation progress."""
        with self._transaction():
            self._escalation_counter = count

    # ========================================================================
    # Reads
    # ========================================================================

    def find_by_code(self, code: str) -> Card | None:
        with self._lock:
            card_id = self._codes.get(normalize_code(code))
            return self._cards.get(card_id) if card_id is not None else None

    def get(self, card_id: UUID) -> Card | None:
        with self._lock:
            return self._cards.get(card_id)

    def list_all(self, card_filter: CardFilter | None = None) -> list[Card]:
        """Cards matching the filter, newest first."""
        card_filter = card_filter or CardFilter()
        with self._lock:
            cards = list(self._cards.values())

        matched = [
            (index, card)
            for index, card in enumerate(cards)
            if (card_filter.status is None or card.status == card_filter.status)
            and (card_filter.created_by is None or card.created_by == card_filter.created_by)
        ]
        matched.sort(key=lambda pair: (pair[1].created_at, pair[0]), reverse=True)
        return [card for _, card in matched]

    def list_unredeemed(self, now: datetime | None = None) -> list[Card]:
        """Cards still redeemable at now, newest first."""
        now = now or self._clock()
        return [
            card
            for card in self.list_all()
            if not card.redeemed and not card.expired and not card.is_past_expiry(now)
        ]

    def list_redemptions(
        self, redemption_filter: RedemptionFilter | None = None
    ) -> list[RedemptionRecord]:
        """Redemption records matching the filter, most recent commit first."""
        redemption_filter = redemption_filter or RedemptionFilter()
        with self._lock:
            history = list(self._history)

        return [
            record
            for record in reversed(history)
            if (redemption_filter.card_id is None or record.card_id == redemption_filter.card_id)
            and (
                redemption_filter.redeemer_identity is None
                or record.redeemer_identity == redemption_filter.redeemer_identity
            )
        ]

    def stats(self) -> CardStats:
        with self._lock:
            cards = list(self._cards.values())

        redeemed = [card for card in cards if card.redeemed]
        return CardStats(
            total_cards=len(cards),
            total_value_minor=sum(card.original_balance_minor for card in cards),
            redeemed_cards=len(redeemed),
            redeemed_value_minor=sum(card.balance_minor for card in redeemed),
            active_cards=sum(1 for card in cards if not card.redeemed and not card.expired),
            expired_cards=sum(1 for card in cards if card.expired),
        )

    @property
    def user_balance(self) -> int:
        with self._lock:
            return self._user_balance

    @property
    def escalation_counter(self) -> int:
        with self._lock:
            return self._escalation_counter
