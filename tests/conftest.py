"""Pytest configuration and fixtures."""

import os
from typing import AsyncGenerator, Optional

import base58
import pytest
import pytest_asyncio
from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.transaction import VersionedTransaction
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

# Deterministic test keys
OPERATOR_KEY = Keypair.from_seed(bytes(range(1, 33)))
USER_KEY = Keypair.from_seed(bytes(range(33, 65)))
TREASURY_KEY = Keypair.from_seed(bytes(range(65, 97)))

OPERATOR_ADDRESS = str(OPERATOR_KEY.pubkey())
USER_ADDRESS = str(USER_KEY.pubkey())
TREASURY_ADDRESS = str(TREASURY_KEY.pubkey())

MARGINFI_PROGRAM = "MFv2hWf31Z9kbCa1snEPYctwafyhdvnV7FZnsebVacA"
MARGINFI_GROUP = "4qp6Fx6tnZkY5Wropq9wUYgtFxXKwE6viZxFHg3rdAG8"
USDC_MINT = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
JWT_SECRET = "test-secret"

# Set test environment
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["DEBUG"] = "false"
os.environ["JWT_SECRET"] = JWT_SECRET
os.environ["SIGNER_BACKEND"] = "local"
os.environ["FEE_PAYER_SECRET_KEY"] = base58.b58encode(bytes(OPERATOR_KEY)).decode()
os.environ["FEE_PAYER_ADDRESS"] = OPERATOR_ADDRESS
os.environ["TREASURY_OWNER"] = TREASURY_ADDRESS
os.environ["MARGINFI_PROGRAM_ID"] = MARGINFI_PROGRAM
os.environ["MARGINFI_GROUP"] = MARGINFI_GROUP
os.environ["USDC_MINT"] = USDC_MINT
os.environ["FLEX_WITHDRAW_FEE_RATE"] = "0"
os.environ["CONFIRM_POLL_INTERVAL"] = "0"

from havenvault.errors import RPCError
from havenvault.ledger.models import Base
from havenvault.ledger.repository import LedgerRepository
from havenvault.marginfi.cache import reset_bank_cache
from havenvault.solana.keys import TOKEN_PROGRAM_ID, get_associated_token_address, to_pubkey
from havenvault.solana.programs import (
    LENDING_ACCOUNT_DEPOSIT,
    account_meta,
    set_compute_unit_limit,
    transfer_checked,
)
from havenvault.solana.rpc import AccountInfo, BlockhashInfo
from havenvault.solana.wire import (
    compile_v0,
    message_bytes,
    parse_transaction,
    signer_index,
    transaction_signature,
    unsigned_transaction,
    with_signature,
)

BLOCKHASH = base58.b58encode(bytes([7]) * 32).decode()


class FakeRPC:
    """In-memory stand-in for SolanaRPC.

    ``statuses`` is consumed one entry per poll; the last entry repeats.
    ``send_errors`` are raised in order before sends start succeeding.
    """

    def __init__(self):
        self.accounts: dict[str, AccountInfo] = {}
        self.fetched: list[str] = []
        self.blockhash = BlockhashInfo(blockhash=BLOCKHASH, last_valid_block_height=1000)
        self.block_height = 900
        self.statuses: list[Optional[dict]] = [{"confirmationStatus": "confirmed", "err": None}]
        self.send_errors: list[Exception] = []
        self.sent: list[bytes] = []
        self.transactions: dict[str, dict] = {}
        self.default_transaction: Optional[dict] = None
        self.transaction_error: Optional[RPCError] = None

    def add_account(self, address, owner, data: bytes, lamports: int = 1_000_000) -> None:
        self.accounts[str(address)] = AccountInfo(
            owner=to_pubkey(owner), data=data, lamports=lamports
        )

    async def get_account_info(self, address):
        self.fetched.append(str(address))
        return self.accounts.get(str(address))

    async def get_latest_blockhash(self):
        return self.blockhash

    async def send_transaction(self, tx_bytes, *, max_retries=3, skip_preflight=False):
        self.sent.append(tx_bytes)
        if self.send_errors:
            raise self.send_errors.pop(0)
        return transaction_signature(parse_transaction(tx_bytes))

    async def get_signature_statuses(self, signatures):
        if len(self.statuses) > 1:
            return [self.statuses.pop(0)]
        return [self.statuses[0] if self.statuses else None]

    async def get_block_height(self):
        return self.block_height

    async def get_transaction(self, signature):
        if self.transaction_error is not None:
            raise self.transaction_error
        return self.transactions.get(signature, self.default_transaction)


def token_balance(owner: str, amount: int, mint: str = USDC_MINT, index: int = 1) -> dict:
    """One entry of pre/postTokenBalances."""
    return {
        "accountIndex": index,
        "mint": mint,
        "owner": owner,
        "uiTokenAmount": {"amount": str(amount), "decimals": 6},
    }


def default_instructions(user: Pubkey) -> list[Instruction]:
    """A compute budget instruction plus a token transfer authorized by ``user``."""
    mint = to_pubkey(USDC_MINT)
    return [
        set_compute_unit_limit(200_000),
        transfer_checked(
            TOKEN_PROGRAM_ID,
            source=get_associated_token_address(user, mint),
            mint=mint,
            destination=get_associated_token_address(to_pubkey(TREASURY_ADDRESS), mint),
            authority=user,
            amount=1_000_000,
            decimals=6,
        ),
    ]


def deposit_instruction(user: Pubkey, marginfi_account: Pubkey) -> Instruction:
    """A lending deposit; the sub-account sits at account index 1."""
    return Instruction(
        program_id=to_pubkey(MARGINFI_PROGRAM),
        accounts=[
            account_meta(to_pubkey(MARGINFI_GROUP)),
            account_meta(marginfi_account, is_writable=True),
            account_meta(user, is_signer=True),
            account_meta(Pubkey(bytes([9]) * 32), is_writable=True),
            account_meta(get_associated_token_address(user, to_pubkey(USDC_MINT)), is_writable=True),
            account_meta(TOKEN_PROGRAM_ID),
        ],
        data=LENDING_ACCOUNT_DEPOSIT + (18_500_000).to_bytes(8, "little"),
    )


def sign_as_user(tx: VersionedTransaction, key: Keypair = USER_KEY) -> VersionedTransaction:
    index = signer_index(tx, key.pubkey())
    return with_signature(tx, index, key.sign_message(message_bytes(tx)))


def make_user_signed_tx(
    instructions: Optional[list[Instruction]] = None,
    *,
    payer: Optional[Pubkey] = None,
    sign: bool = True,
) -> VersionedTransaction:
    """v0 transaction paid by the operator and signed by the test user."""
    user = to_pubkey(USER_ADDRESS)
    message = compile_v0(
        payer or to_pubkey(OPERATOR_ADDRESS),
        instructions if instructions is not None else default_instructions(user),
        BLOCKHASH,
    )
    tx = unsigned_transaction(message)
    return sign_as_user(tx) if sign else tx


@pytest.fixture
def fake_rpc() -> FakeRPC:
    return FakeRPC()


@pytest.fixture(autouse=True)
def _fresh_bank_cache():
    reset_bank_cache()
    yield
    reset_bank_cache()


@pytest_asyncio.fixture
async def db_engine():
    """Create in-memory database engine for testing."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(db_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create database session for testing."""
    session_factory = async_sessionmaker(
        bind=db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def ledger_repo(db_session: AsyncSession) -> LedgerRepository:
    """Create ledger repository for testing."""
    return LedgerRepository(db_session)
