"""Tests for the savings ledger."""

import pytest

from havenvault.ledger.models import AccountType, Direction
from havenvault.ledger.repository import LedgerRepository
from havenvault.services.ledger_writer import LedgerWriter
from havenvault.services.reconciler import Movement

from conftest import USER_ADDRESS

OTHER_WALLET = "So11111111111111111111111111111111111111112"


def movement(direction: Direction, amount: int, fee: int = 0) -> Movement:
    return Movement(
        direction=direction,
        user_delta=0,
        treasury_delta=fee,
        amount=amount,
        fee=fee,
        gross=amount,
    )


class TestUserOperations:
    """Tests for user operations."""

    @pytest.mark.asyncio
    async def test_create_user(self, ledger_repo: LedgerRepository, db_session):
        """Test user creation."""
        user = await ledger_repo.get_or_create_user(USER_ADDRESS)
        await db_session.commit()

        assert user.id is not None
        assert user.wallet_address == USER_ADDRESS

    @pytest.mark.asyncio
    async def test_get_existing_user(self, ledger_repo: LedgerRepository, db_session):
        """Test retrieving existing user."""
        user1 = await ledger_repo.get_or_create_user(USER_ADDRESS)
        await db_session.commit()

        user2 = await ledger_repo.get_or_create_user(USER_ADDRESS)

        assert user1.id == user2.id
        assert await ledger_repo.get_user_by_wallet(OTHER_WALLET) is None


class TestLedgerEntries:
    """Tests for signature-keyed ledger rows."""

    @pytest.mark.asyncio
    async def test_insert_if_absent(self, ledger_repo: LedgerRepository):
        user = await ledger_repo.get_or_create_user(USER_ADDRESS)
        kwargs = dict(
            user_id=user.id,
            account_type=AccountType.FLEX,
            direction=Direction.DEPOSIT,
            amount=1_000_000,
            principal=1_000_000,
            interest=0,
            fee=0,
            signature="sig-1",
        )

        entry, inserted = await ledger_repo.insert_entry_if_absent(**kwargs)
        again, inserted_again = await ledger_repo.insert_entry_if_absent(**{**kwargs, "amount": 5})

        assert inserted
        assert not inserted_again
        assert again.id == entry.id
        assert again.amount_minor == 1_000_000
        assert entry.account_type == "flex"
        assert entry.direction == "deposit"


class TestLedgerWriter:
    """Tests for idempotent recording and replayed aggregates."""

    @pytest.mark.asyncio
    async def test_first_writer_records(self, ledger_repo: LedgerRepository):
        writer = LedgerWriter(ledger_repo)
        result = await writer.record(
            wallet_address=USER_ADDRESS,
            account_type=AccountType.FLEX,
            movement=movement(Direction.DEPOSIT, 18_500_000, fee=1_500_000),
            signature="dep-1",
        )

        assert result.first_writer
        assert result.principal == 18_500_000
        assert result.interest == 0
        assert result.entry.fee_minor == 1_500_000

        user = await ledger_repo.get_user_by_wallet(USER_ADDRESS)
        account = await ledger_repo.get_savings_account(user.id, AccountType.FLEX)
        assert account.principal_deposited == 18_500_000
        assert account.total_deposited == 18_500_000
        assert account.fees_paid == 1_500_000
        assert account.principal_net == 18_500_000
        assert account.last_synced_at is not None

    @pytest.mark.asyncio
    async def test_duplicate_signature_changes_nothing(self, ledger_repo: LedgerRepository):
        writer = LedgerWriter(ledger_repo)
        first = await writer.record(
            wallet_address=USER_ADDRESS,
            account_type=AccountType.FLEX,
            movement=movement(Direction.DEPOSIT, 10_000_000),
            signature="dep-dup",
        )
        second = await writer.record(
            wallet_address=USER_ADDRESS,
            account_type=AccountType.FLEX,
            movement=movement(Direction.DEPOSIT, 99_000_000),
            signature="dep-dup",
        )

        assert first.first_writer
        assert not second.first_writer
        assert second.entry.id == first.entry.id

        user = await ledger_repo.get_user_by_wallet(USER_ADDRESS)
        totals = await ledger_repo.ledger_totals(user.id, AccountType.FLEX)
        assert totals.entries == 1
        assert totals.principal_deposited == 10_000_000

    @pytest.mark.asyncio
    async def test_withdrawals_draw_principal_then_interest(self, ledger_repo: LedgerRepository):
        writer = LedgerWriter(ledger_repo)
        await writer.record(
            wallet_address=USER_ADDRESS,
            account_type=AccountType.FLEX,
            movement=movement(Direction.DEPOSIT, 100_000_000),
            signature="d1",
        )
        w1 = await writer.record(
            wallet_address=USER_ADDRESS,
            account_type=AccountType.FLEX,
            movement=movement(Direction.WITHDRAW, 60_000_000),
            signature="w1",
        )
        w2 = await writer.record(
            wallet_address=USER_ADDRESS,
            account_type=AccountType.FLEX,
            movement=movement(Direction.WITHDRAW, 50_000_000, fee=250_000),
            signature="w2",
        )

        assert (w1.principal, w1.interest) == (60_000_000, 0)
        assert (w2.principal, w2.interest) == (40_000_000, 10_000_000)

        user = await ledger_repo.get_user_by_wallet(USER_ADDRESS)
        account = await ledger_repo.get_savings_account(user.id, AccountType.FLEX)
        assert account.principal_withdrawn == 100_000_000
        assert account.interest_withdrawn == 10_000_000
        assert account.total_withdrawn == 110_000_000
        assert account.fees_paid == 250_000
        assert account.principal_net == 0
        assert await ledger_repo.principal_remaining(user.id, AccountType.FLEX) == 0

    @pytest.mark.asyncio
    async def test_account_types_are_separate(self, ledger_repo: LedgerRepository):
        writer = LedgerWriter(ledger_repo)
        await writer.record(
            wallet_address=USER_ADDRESS,
            account_type=AccountType.PLUS,
            movement=movement(Direction.DEPOSIT, 100),
            signature="plus-1",
        )
        result = await writer.record(
            wallet_address=USER_ADDRESS,
            account_type=AccountType.FLEX,
            movement=movement(Direction.WITHDRAW, 40),
            signature="flex-1",
        )

        assert (result.principal, result.interest) == (0, 40)

        user = await ledger_repo.get_user_by_wallet(USER_ADDRESS)
        assert await ledger_repo.principal_remaining(user.id, AccountType.PLUS) == 100

    @pytest.mark.asyncio
    async def test_indeterminate_movement_rejected(self, ledger_repo: LedgerRepository):
        empty = Movement(None, 0, 0, 0, 0, 0)
        with pytest.raises(ValueError):
            await LedgerWriter(ledger_repo).record(
                wallet_address=USER_ADDRESS,
                account_type=AccountType.FLEX,
                movement=empty,
                signature="none",
            )


class TestAggregateReplay:
    """Aggregates are a full replay and can be rebuilt at any time."""

    @pytest.mark.asyncio
    async def test_recompute_overwrites(self, ledger_repo: LedgerRepository):
        writer = LedgerWriter(ledger_repo)
        await writer.record(
            wallet_address=USER_ADDRESS,
            account_type=AccountType.FLEX,
            movement=movement(Direction.DEPOSIT, 7_000_000),
            signature="r1",
        )
        user = await ledger_repo.get_user_by_wallet(USER_ADDRESS)

        account = await ledger_repo.get_savings_account(user.id, AccountType.FLEX)
        account.principal_deposited = 1  # drifted
        account = await ledger_repo.recompute_aggregate(user.id, AccountType.FLEX)

        assert account.principal_deposited == 7_000_000

    @pytest.mark.asyncio
    async def test_empty_replay(self, ledger_repo: LedgerRepository):
        user = await ledger_repo.get_or_create_user(USER_ADDRESS)
        totals = await ledger_repo.ledger_totals(user.id, AccountType.FLEX)
        assert totals.entries == 0
        assert totals.principal_remaining == 0


class TestProtocolPositions:
    """Tests for lending sub-account references."""

    @pytest.mark.asyncio
    async def test_upsert_position(self, ledger_repo: LedgerRepository):
        user = await ledger_repo.get_or_create_user(USER_ADDRESS)

        created = await ledger_repo.upsert_position(user.id, AccountType.FLEX, "acct-a")
        moved = await ledger_repo.upsert_position(user.id, AccountType.FLEX, "acct-b")

        assert moved.id == created.id
        assert moved.protocol_account == "acct-b"
        assert await ledger_repo.get_position(user.id, AccountType.PLUS) is None
