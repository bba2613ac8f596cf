"""
Tests for the card store: mutations, rollback, persistence, listings.
"""

import json
import threading
from datetime import timedelta
from uuid import uuid4

import pytest

from giftcards.exceptions import (
    AlreadyRedeemedError,
    CardExpiredError,
    CardNotFoundError,
    DuplicateCodeError,
    StorageFailureError,
)
from giftcards.models.api import CardStatus
from giftcards.models.domain import Card, CardFilter, Origin, RedemptionFilter
from giftcards.services.card_store import CardStore

from conftest import FailingBlobStore, make_card


class TestInsert:
    """Tests for CardStore.insert."""

    def test_insert_and_find(self, card_store: CardStore):
        card = make_card()
        card_store.insert(card)

        assert card_store.find_by_code(card.code) == card
        assert card_store.get(card.id) == card

    def test_find_by_code_normalizes(self, card_store: CardStore, active_card: Card):
        assert card_store.find_by_code("abcd efgh jklm npqr") == active_card

    def test_duplicate_code_rejected(self, card_store: CardStore, active_card: Card):
        with pytest.raises(DuplicateCodeError):
            card_store.insert(make_card(code=active_card.code))
        assert len(card_store.list_all()) == 1

    def test_insert_persists_document(self, card_store: CardStore, blob_store: FailingBlobStore):
        card_store.insert(make_card())

        document = json.loads(blob_store.load("giftcard-state"))
        assert set(document) == {"cards", "redemptionHistory", "userBalance", "escalationCounter"}
        assert document["cards"][0]["code"] == "ABCD-EFGH-JKLM-NPQR"
        assert document["cards"][0]["originalBalance"] == 2500

    def test_failed_persist_rolls_back(self, card_store: CardStore, blob_store: FailingBlobStore):
        blob_store.fail_writes = True

        with pytest.raises(StorageFailureError):
            card_store.insert(make_card())

        assert card_store.list_all() == []
        assert card_store.find_by_code("ABCD-EFGH-JKLM-NPQR") is None


class TestMarkRedeemed:
    """Tests for CardStore.mark_redeemed."""

    def test_marks_card_and_appends_record(self, card_store: CardStore, active_card: Card, clock):
        origin = Origin(ip_address="10.0.0.1", user_agent="pytest")
        record = card_store.mark_redeemed(active_card.id, "user-1", clock.now, origin)

        card = card_store.get(active_card.id)
        assert card is not None
        assert card.redeemed is True
        assert card.redeemed_at == clock.now
        assert card.redeemed_by == "user-1"
        assert card.status == CardStatus.REDEEMED

        assert record.card_id == active_card.id
        assert record.amount_minor == 2500
        assert record.origin == origin
        assert card_store.list_redemptions() == [record]

    def test_credits_user_balance(self, card_store: CardStore, active_card: Card, clock):
        card_store.mark_redeemed(active_card.id, "user-1", clock.now)
        assert card_store.user_balance == 2500

    def test_second_redeem_raises(self, card_store: CardStore, active_card: Card, clock):
        card_store.mark_redeemed(active_card.id, "user-1", clock.now)

        with pytest.raises(AlreadyRedeemedError):
            card_store.mark_redeemed(active_card.id, "user-2", clock.now)

        assert len(card_store.list_redemptions()) == 1
        assert card_store.user_balance == 2500

    def test_expired_card_raises(self, card_store: CardStore, expired_card: Card, clock):
        card_store.mark_expired(expired_card.id)
        with pytest.raises(CardExpiredError):
            card_store.mark_redeemed(expired_card.id, "user-1", clock.now)

    def test_unknown_card_raises(self, card_store: CardStore, clock):
        with pytest.raises(CardNotFoundError):
            card_store.mark_redeemed(uuid4(), "user-1", clock.now)

    def test_failed_persist_rolls_back(
        self, card_store: CardStore, active_card: Card, blob_store: FailingBlobStore, clock
    ):
        blob_store.fail_writes = True

        with pytest.raises(StorageFailureError):
            card_store.mark_redeemed(active_card.id, "user-1", clock.now)

        card = card_store.get(active_card.id)
        assert card is not None
        assert card.redeemed is False
        assert card_store.list_redemptions() == []
        assert card_store.user_balance == 0

    def test_concurrent_redeem_single_winner(self, card_store: CardStore, active_card: Card, clock):
        """Exactly one of many concurrent redemptions of the same card commits."""
        winners: list[str] = []
        losers: list[str] = []
        barrier = threading.Barrier(8)

        def worker(name: str) -> None:
            barrier.wait()
            try:
                card_store.mark_redeemed(active_card.id, name, clock.now)
                winners.append(name)
            except AlreadyRedeemedError:
                losers.append(name)

        threads = [threading.Thread(target=worker, args=(f"user-{i}",)) for i in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(winners) == 1
        assert len(losers) == 7
        assert len(card_store.list_redemptions()) == 1
        assert card_store.user_balance == 2500


class TestMarkExpired:
    """Tests for CardStore.mark_expired."""

    def test_sets_flag(self, card_store: CardStore, expired_card: Card):
        card_store.mark_expired(expired_card.id)
        card = card_store.get(expired_card.id)
        assert card is not None
        assert card.expired is True
        assert card.status == CardStatus.EXPIRED

    def test_idempotent(self, card_store: CardStore, expired_card: Card):
        card_store.mark_expired(expired_card.id)
        card_store.mark_expired(expired_card.id)
        card = card_store.get(expired_card.id)
        assert card is not None
        assert card.expired is True

    def test_unknown_card_raises(self, card_store: CardStore):
        with pytest.raises(CardNotFoundError):
            card_store.mark_expired(uuid4())

    def test_already_expired_does_not_write(
        self, card_store: CardStore, expired_card: Card, blob_store: FailingBlobStore
    ):
        card_store.mark_expired(expired_card.id)
        saves = blob_store.save_calls
        blob_store.fail_writes = True

        card_store.mark_expired(expired_card.id)

        assert blob_store.save_calls == saves

    def test_redeemed_card_not_flagged(
        self, card_store: CardStore, active_card: Card, blob_store: FailingBlobStore, clock
    ):
        card_store.mark_redeemed(active_card.id, "user-1", clock.now)
        saves = blob_store.save_calls

        card_store.mark_expired(active_card.id)

        card = card_store.get(active_card.id)
        assert card is not None
        assert card.expired is False
        assert blob_store.save_calls == saves


class TestPersistence:
    """Tests for reload and the persisted document."""

    def test_round_trip(self, card_store: CardStore, blob_store: FailingBlobStore, clock):
        first = make_card(code="AAAA-BBBB-CCCC-DDDD")
        second = make_card(
            code="EEEE-FFFF-GGGG-HHHH",
            amount_minor=10_000,
            created_at=clock.now + timedelta(minutes=1),
            expires_at=clock.now + timedelta(days=30),
        )
        card_store.insert(first)
        card_store.insert(second)
        card_store.mark_redeemed(first.id, "user-1", clock.now, Origin("10.0.0.1", "pytest"))
        card_store.set_escalation_counter(4)

        reloaded = CardStore(blob_store, clock=clock)
        reloaded.reload()

        assert reloaded.list_all() == card_store.list_all()
        assert reloaded.list_redemptions() == card_store.list_redemptions()
        assert reloaded.user_balance == 2500
        assert reloaded.escalation_counter == 4

    def test_missing_document_is_empty(self, clock):
        store = CardStore(FailingBlobStore(), clock=clock)
        store.reload()
        assert store.list_all() == []
        assert store.user_balance == 0
        assert store.escalation_counter == 0

    def test_corrupt_document_raises(self, blob_store: FailingBlobStore, clock):
        blob_store.save("giftcard-state", "{not json")
        store = CardStore(blob_store, clock=clock)
        with pytest.raises(StorageFailureError):
            store.reload()

    def test_invalid_card_in_document_raises(self, blob_store: FailingBlobStore, clock):
        document = {
            "cards": [
                {
                    "id": str(uuid4()),
                    "code": "AAAA-BBBB-CCCC-DDDD",
                    "balance": 0,
                    "originalBalance": 0,
                    "createdAt": clock.now.isoformat(),
                }
            ]
        }
        blob_store.save("giftcard-state", json.dumps(document))
        store = CardStore(blob_store, clock=clock)
        with pytest.raises(StorageFailureError):
            store.reload()

    def test_duplicate_codes_in_document_raise(self, blob_store: FailingBlobStore, clock):
        card = {
            "code": "AAAA-BBBB-CCCC-DDDD",
            "balance": 500,
            "originalBalance": 500,
            "createdAt": clock.now.isoformat(),
        }
        document = {"cards": [{"id": str(uuid4()), **card}, {"id": str(uuid4()), **card}]}
        blob_store.save("giftcard-state", json.dumps(document))
        store = CardStore(blob_store, clock=clock)
        with pytest.raises(StorageFailureError):
            store.reload()

    def test_unexpected_adapter_error_on_load(self, clock):
        class BrokenBlobStore(FailingBlobStore):
            def load(self, key: str) -> str | None:
                raise RuntimeError("driver crashed")

        store = CardStore(BrokenBlobStore(), clock=clock)
        with pytest.raises(StorageFailureError):
            store.reload()

    def test_unexpected_adapter_error_on_save_rolls_back(
        self, card_store: CardStore, blob_store: FailingBlobStore, monkeypatch
    ):
        def crash(key: str, payload: str) -> None:
            raise RuntimeError("driver crashed")

        monkeypatch.setattr(blob_store, "save", crash)

        with pytest.raises(StorageFailureError):
            card_store.insert(make_card())
        assert card_store.list_all() == []

    def test_unreadable_blob_raises(self, clock):
        class BrokenBlobStore(FailingBlobStore):
            def load(self, key: str) -> str | None:
                raise OSError("io error")

        store = CardStore(BrokenBlobStore(), clock=clock)
        with pytest.raises(StorageFailureError):
            store.reload()


class TestListings:
    """Tests for list_all, list_unredeemed, list_redemptions and stats."""

    def test_list_all_newest_first(self, card_store: CardStore, clock):
        older = make_card(code="AAAA-AAAA-AAAA-AAAA", created_at=clock.now)
        newer = make_card(code="BBBB-BBBB-BBBB-BBBB", created_at=clock.now + timedelta(hours=1))
        card_store.insert(older)
        card_store.insert(newer)

        assert [c.id for c in card_store.list_all()] == [newer.id, older.id]

    def test_same_timestamp_latest_insert_first(self, card_store: CardStore, clock):
        first = make_card(code="AAAA-AAAA-AAAA-AAAA")
        second = make_card(code="BBBB-BBBB-BBBB-BBBB")
        card_store.insert(first)
        card_store.insert(second)

        assert [c.id for c in card_store.list_all()] == [second.id, first.id]

    def test_filter_by_status(
        self, card_store: CardStore, active_card: Card, expired_card: Card, clock
    ):
        redeemed = make_card(code="RRRR-RRRR-RRRR-RRRR")
        card_store.insert(redeemed)
        card_store.mark_redeemed(redeemed.id, "user-1", clock.now)
        card_store.mark_expired(expired_card.id)

        active = card_store.list_all(CardFilter(status=CardStatus.ACTIVE))
        assert [c.id for c in active] == [active_card.id]
        assert [c.id for c in card_store.list_all(CardFilter(status=CardStatus.REDEEMED))] == [
            redeemed.id
        ]
        assert [c.id for c in card_store.list_all(CardFilter(status=CardStatus.EXPIRED))] == [
            expired_card.id
        ]

    def test_filter_by_creator(self, card_store: CardStore):
        card_store.insert(make_card(code="AAAA-AAAA-AAAA-AAAA", created_by="admin"))
        card_store.insert(make_card(code="BBBB-BBBB-BBBB-BBBB", created_by="auth-key"))

        cards = card_store.list_all(CardFilter(created_by="auth-key"))
        assert [c.code for c in cards] == ["BBBB-BBBB-BBBB-BBBB"]

    def test_unredeemed_excludes_past_expiry(
        self, card_store: CardStore, active_card: Card, expired_card: Card, clock
    ):
        """A card past expiry is excluded even before its flag is set."""
        redeemed = make_card(code="RRRR-RRRR-RRRR-RRRR")
        card_store.insert(redeemed)
        card_store.mark_redeemed(redeemed.id, "user-1", clock.now)

        assert [c.id for c in card_store.list_unredeemed()] == [active_card.id]

    def test_redemptions_filtered_and_ordered(self, card_store: CardStore, clock):
        first = make_card(code="AAAA-AAAA-AAAA-AAAA")
        second = make_card(code="BBBB-BBBB-BBBB-BBBB")
        card_store.insert(first)
        card_store.insert(second)
        r1 = card_store.mark_redeemed(first.id, "user-1", clock.now)
        r2 = card_store.mark_redeemed(second.id, "user-2", clock.now + timedelta(seconds=5))

        assert card_store.list_redemptions() == [r2, r1]
        assert card_store.list_redemptions(RedemptionFilter(card_id=first.id)) == [r1]
        assert card_store.list_redemptions(RedemptionFilter(redeemer_identity="user-2")) == [r2]

    def test_redemptions_follow_commit_order_not_timestamp(self, card_store: CardStore, clock):
        """A later commit lists first even when it carries an earlier timestamp."""
        first = make_card(code="AAAA-AAAA-AAAA-AAAA")
        second = make_card(code="BBBB-BBBB-BBBB-BBBB")
        card_store.insert(first)
        card_store.insert(second)

        r1 = card_store.mark_redeemed(first.id, "user-1", clock.now)
        r2 = card_store.mark_redeemed(second.id, "user-2", clock.now - timedelta(seconds=1))

        assert card_store.list_redemptions() == [r2, r1]

    def test_commit_order_survives_reload(
        self, card_store: CardStore, blob_store: FailingBlobStore, clock
    ):
        first = make_card(code="AAAA-AAAA-AAAA-AAAA")
        second = make_card(code="BBBB-BBBB-BBBB-BBBB")
        card_store.insert(first)
        card_store.insert(second)
        card_store.mark_redeemed(first.id, "user-1", clock.now)
        card_store.mark_redeemed(second.id, "user-2", clock.now - timedelta(seconds=1))

        reloaded = CardStore(blob_store, clock=clock)
        reloaded.reload()

        assert [r.card_id for r in reloaded.list_redemptions()] == [second.id, first.id]

    def test_stats(self, card_store: CardStore, active_card: Card, expired_card: Card, clock):
        redeemed = make_card(code="RRRR-RRRR-RRRR-RRRR", amount_minor=10_000)
        card_store.insert(redeemed)
        card_store.mark_redeemed(redeemed.id, "user-1", clock.now)
        card_store.mark_expired(expired_card.id)

        stats = card_store.stats()
        assert stats.total_cards == 3
        assert stats.total_value_minor == 15_000
        assert stats.redeemed_cards == 1
        assert stats.redeemed_value_minor == 10_000
        assert stats.active_cards == 1
        assert stats.expired_cards == 1
