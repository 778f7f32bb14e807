"""Unsigned flex-savings withdrawal transactions.

The builder reads the user's lending sub-account, picks the settlement-mint
bank, and assembles an unsigned v0 transaction with the operator as fee
payer. The user signs it client-side and sends it back through the
co-signing pipeline.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Union

from solders.instruction import Instruction
from solders.pubkey import Pubkey

from havenvault.amounts import (
    MINOR_UNIT_DECIMALS,
    b64encode,
    fee_from_amount,
    minor_to_ui,
    rate_to_ppm,
    ui_to_minor,
)
from havenvault.errors import (
    DecodeFailureError,
    InvalidAmountError,
    MintMismatchError,
    MissingOracleError,
    NoActiveBalanceError,
    NoPositionError,
    TransactionTooLargeError,
)
from havenvault.marginfi.cache import BankDescriptor, TTLCache, get_bank_cache
from havenvault.marginfi.layouts import AccountDecoder, BankRecord, MarginfiAccountRecord
from havenvault.solana import programs
from havenvault.solana.keys import (
    TOKEN_2022_PROGRAM_ID,
    TOKEN_PROGRAM_ID,
    get_associated_token_address,
    to_pubkey,
)
from havenvault.solana.rpc import SolanaRPC
from havenvault.solana.wire import MAX_TRANSACTION_SIZE, compile_v0, unsigned_transaction

logger = logging.getLogger(__name__)

# SPL mint layout: mint_authority COption<Pubkey> (36) + supply u64 (8)
MINT_DECIMALS_OFFSET = 44


@dataclass
class WithdrawalBuild:
    """An unsigned withdrawal plus the metadata the client displays."""

    transaction: str
    owner: Pubkey
    fee_payer: Pubkey
    treasury_owner: Pubkey
    marginfi_account: Pubkey
    bank: Pubkey
    user_token_account: Pubkey
    treasury_token_account: Pubkey
    token_program: Pubkey
    decimals: int
    amount: int
    fee: int
    net: int
    fee_rate: float
    fee_ppm: int
    compute_units: int
    last_valid_block_height: int
    withdraw_all_requested: bool
    withdraw_all_used: bool
    remaining_count: int
    size: int

    def to_dict(self) -> dict:
        return {
            "ok": True,
            "transaction": self.transaction,
            "direction": "withdraw",
            "accountType": "flex",
            "requiredSigner": str(self.owner),
            "feePayer": str(self.fee_payer),
            "treasuryOwner": str(self.treasury_owner),
            "userTokenAccount": str(self.user_token_account),
            "treasuryTokenAccount": str(self.treasury_token_account),
            "marginfiAccount": str(self.marginfi_account),
            "bank": str(self.bank),
            "tokenProgram": str(self.token_program),
            "decimals": self.decimals,
            "amountUi": minor_to_ui(self.amount, self.decimals),
            "feeUi": minor_to_ui(self.fee, self.decimals),
            "netUi": minor_to_ui(self.net, self.decimals),
            "feeRate": self.fee_rate,
            "feePpm": self.fee_ppm,
            "computeUnits": self.compute_units,
            "lastValidBlockHeight": self.last_valid_block_height,
            "withdrawAllRequested": self.withdraw_all_requested,
            "withdrawAllUsed": self.withdraw_all_used,
            "remainingCount": self.remaining_count,
            "size": self.size,
        }


class WithdrawalBuilder:
    """Builds lending withdrawals for one program, group and settlement mint."""

    def __init__(
        self,
        rpc: SolanaRPC,
        *,
        program_id: Pubkey,
        group: Pubkey,
        settlement_mint: Pubkey,
        fee_payer: Pubkey,
        treasury_owner: Pubkey,
        compute_unit_limit: int = 160_000,
        compute_unit_price: int = 80_000,
        cache: Optional[TTLCache[BankDescriptor]] = None,
        decoder: Optional[AccountDecoder] = None,
    ):
        self.rpc = rpc
        self.program_id = program_id
        self.group = group
        self.settlement_mint = settlement_mint
        self.fee_payer = fee_payer
        self.treasury_owner = treasury_owner
        self.compute_unit_limit = compute_unit_limit
        self.compute_unit_price = compute_unit_price
        self.cache = cache if cache is not None else get_bank_cache()
        self.decoder = decoder or AccountDecoder()

    @classmethod
    def from_settings(cls, rpc: SolanaRPC, settings, **kwargs) -> "WithdrawalBuilder":
        return cls(
            rpc,
            program_id=to_pubkey(settings.marginfi_program_id),
            group=to_pubkey(settings.marginfi_group),
            settlement_mint=to_pubkey(settings.usdc_mint),
            fee_payer=to_pubkey(settings.fee_payer_address),
            treasury_owner=to_pubkey(settings.treasury_owner),
            compute_unit_limit=settings.compute_unit_limit,
            compute_unit_price=settings.compute_unit_price_micro_lamports,
            **kwargs,
        )

    async def build(
        self,
        *,
        owner: Pubkey,
        marginfi_account: Optional[Pubkey],
        amount_ui: Union[str, float, Decimal],
        withdraw_all: bool = False,
        ensure_accounts: bool = True,
        fee_rate: float = 0.0,
    ) -> WithdrawalBuild:
        """Assemble the unsigned withdrawal.

        Args:
            owner: user wallet, the only client-side signer
            marginfi_account: the user's lending sub-account
            amount_ui: gross amount leaving savings, in display units
            withdraw_all: client asked for "max"
            ensure_accounts: prepend idempotent token account creation
            fee_rate: fraction of the gross amount routed to the treasury

        Returns:
            WithdrawalBuild with a base64 unsigned transaction

        Raises:
            InvalidAmountError, NoPositionError, DecodeFailureError,
            MissingOracleError, MintMismatchError, NoActiveBalanceError,
            TransactionTooLargeError, RPCError
        """
        if ui_to_minor(amount_ui, MINOR_UNIT_DECIMALS) <= 0:
            raise InvalidAmountError("amountUi is required and must be > 0")
        if marginfi_account is None:
            raise NoPositionError("No flex lending account saved for this user")

        token_program, decimals = await self._mint_info()
        amount = ui_to_minor(amount_ui, decimals)
        if amount <= 0:
            raise InvalidAmountError("amountUi is required and must be > 0")

        account = await self._load_account(marginfi_account)
        chosen, pairs = await self._resolve_banks(account)

        remaining = [programs.account_meta(key) for pair in pairs for key in pair]
        if token_program == TOKEN_2022_PROGRAM_ID:
            remaining.insert(0, programs.account_meta(self.settlement_mint))
        remaining.append(programs.account_meta(programs.fee_state_address(self.program_id)))

        ppm = rate_to_ppm(fee_rate)
        fee = fee_from_amount(amount, ppm)
        net = amount - fee
        # the fee leg needs a known amount, so "max" degrades to exact
        withdraw_all_used = withdraw_all and ppm == 0

        user_ata = get_associated_token_address(owner, self.settlement_mint, token_program)
        treasury_ata = get_associated_token_address(
            self.treasury_owner, self.settlement_mint, token_program
        )

        instructions: list[Instruction] = [
            programs.set_compute_unit_limit(self.compute_unit_limit),
            programs.set_compute_unit_price(self.compute_unit_price),
        ]
        if ensure_accounts:
            instructions.append(
                programs.create_associated_token_account_idempotent(
                    self.fee_payer, user_ata, owner, self.settlement_mint, token_program
                )
            )
            if fee > 0:
                instructions.append(
                    programs.create_associated_token_account_idempotent(
                        self.fee_payer,
                        treasury_ata,
                        self.treasury_owner,
                        self.settlement_mint,
                        token_program,
                    )
                )

        instructions.append(
            programs.lending_account_withdraw(
                program_id=self.program_id,
                group=self.group,
                marginfi_account=marginfi_account,
                authority=owner,
                bank=chosen.bank,
                destination_token_account=user_ata,
                liquidity_vault=chosen.liquidity_vault,
                token_program_id=token_program,
                amount=amount,
                withdraw_all=withdraw_all_used,
                remaining_accounts=remaining,
            )
        )

        if fee > 0:
            instructions.append(
                programs.transfer_checked(
                    token_program,
                    source=user_ata,
                    mint=self.settlement_mint,
                    destination=treasury_ata,
                    authority=owner,
                    amount=fee,
                    decimals=decimals,
                )
            )

        checkpoint = await self.rpc.get_latest_blockhash()
        try:
            message = compile_v0(self.fee_payer, instructions, checkpoint.blockhash)
        except ValueError as e:
            raise TransactionTooLargeError(str(e)) from e
        raw = bytes(unsigned_transaction(message))
        if len(raw) > MAX_TRANSACTION_SIZE:
            raise TransactionTooLargeError(
                f"Transaction is {len(raw)} bytes, limit is {MAX_TRANSACTION_SIZE}"
            )

        logger.info(
            f"Built flex withdraw for {owner}: bank={chosen.bank} amount={amount} "
            f"fee={fee} all={withdraw_all_used} size={len(raw)}"
        )

        return WithdrawalBuild(
            transaction=b64encode(raw),
            owner=owner,
            fee_payer=self.fee_payer,
            treasury_owner=self.treasury_owner,
            marginfi_account=marginfi_account,
            bank=chosen.bank,
            user_token_account=user_ata,
            treasury_token_account=treasury_ata,
            token_program=token_program,
            decimals=decimals,
            amount=amount,
            fee=fee,
            net=net,
            fee_rate=fee_rate,
            fee_ppm=ppm,
            compute_units=self.compute_unit_limit,
            last_valid_block_height=checkpoint.last_valid_block_height,
            withdraw_all_requested=withdraw_all,
            withdraw_all_used=withdraw_all_used,
            remaining_count=len(remaining),
            size=len(raw),
        )

    async def _mint_info(self) -> tuple[Pubkey, int]:
        """Token program owning the settlement mint, and its decimals. Never cached."""
        info = await self.rpc.get_account_info(self.settlement_mint)
        if info is None:
            raise MintMismatchError("Settlement mint not found on chain")
        if info.owner == TOKEN_2022_PROGRAM_ID:
            token_program = TOKEN_2022_PROGRAM_ID
        elif info.owner == TOKEN_PROGRAM_ID:
            token_program = TOKEN_PROGRAM_ID
        else:
            raise MintMismatchError(f"Settlement mint owned by unexpected program {info.owner}")
        if len(info.data) <= MINT_DECIMALS_OFFSET:
            raise MintMismatchError("Settlement mint account data too short")
        return token_program, info.data[MINT_DECIMALS_OFFSET]

    async def _load_account(self, address: Pubkey) -> MarginfiAccountRecord:
        info = await self.rpc.get_account_info(address)
        if info is None:
            raise NoPositionError("Lending account not found")
        if info.owner != self.program_id:
            raise MintMismatchError(
                "Lending account owner mismatch",
                details={"owner": str(info.owner), "expected": str(self.program_id)},
            )
        record = self.decoder.decode(info.data)
        if not isinstance(record, MarginfiAccountRecord):
            raise DecodeFailureError(f"Expected MarginfiAccount, got {record.kind}")
        return record

    async def _bank_descriptor(self, bank: Pubkey) -> Optional[BankDescriptor]:
        cached = self.cache.get(str(bank))
        if cached is not None:
            return cached

        info = await self.rpc.get_account_info(bank)
        if info is None:
            return None
        if info.owner != self.program_id:
            raise MintMismatchError(
                "Bank owner mismatch",
                details={"bank": str(bank), "owner": str(info.owner)},
            )
        record = self.decoder.decode(info.data)
        if not isinstance(record, BankRecord):
            raise DecodeFailureError(f"Expected Bank at {bank}, got {record.kind}")

        descriptor = BankDescriptor(
            bank=bank,
            oracle=record.first_oracle(),
            mint=record.mint,
            group=record.group,
            liquidity_vault=record.liquidity_vault,
        )
        self.cache.set(str(bank), descriptor)
        return descriptor

    async def _resolve_banks(
        self, account: MarginfiAccountRecord
    ) -> tuple[BankDescriptor, list[tuple[Pubkey, Pubkey]]]:
        """Pick the settlement bank and collect (bank, oracle) pairs, chosen first."""
        chosen: Optional[BankDescriptor] = None
        pairs: list[tuple[Pubkey, Pubkey]] = []
        foreign_settlement_bank = False

        for balance in account.active_balances():
            descriptor = await self._bank_descriptor(balance.bank_pk)
            if descriptor is None:
                logger.warning(f"Skipping balance: bank {balance.bank_pk} not found")
                continue

            is_settlement = descriptor.mint == self.settlement_mint
            if descriptor.group != self.group:
                logger.warning(
                    f"Skipping balance: bank {descriptor.bank} is in group {descriptor.group}"
                )
                foreign_settlement_bank = foreign_settlement_bank or is_settlement
                continue

            if descriptor.oracle is None:
                if is_settlement:
                    raise MissingOracleError(f"Bank {descriptor.bank} has no oracle configured")
                logger.warning(f"Skipping balance: bank {descriptor.bank} has no oracle")
                continue

            pair = (descriptor.bank, descriptor.oracle)
            if is_settlement and chosen is None:
                chosen = descriptor
                pairs.insert(0, pair)
            else:
                pairs.append(pair)

        if chosen is None:
            if foreign_settlement_bank:
                raise MintMismatchError("Settlement bank belongs to a different group")
            raise NoActiveBalanceError(
                "Lending account has no active settlement-mint balance in this group; "
                "cannot withdraw"
            )
        return chosen, pairs
