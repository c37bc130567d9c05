"""
Point wallet ledger.

Balances are integer cents and may never go negative. Every balance change is
made through `adjust`, which runs inside the caller's transaction, locks the
wallet row and appends an immutable WalletTransaction.
"""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from loguru import logger
from tortoise.backends.base.client import BaseDBAsyncClient

from playlink.errors import InsufficientFunds
from playlink.models import (
    TransactionCategory,
    TransactionDirection,
    Wallet,
    WalletTransaction,
)

log = logger.bind(log_type="payment")


async def balance(user_id: UUID, conn: BaseDBAsyncClient | None = None) -> int:
    qs = Wallet.filter(user_id=user_id)
    if conn is not None:
        qs = qs.using_db(conn)
    wallet = await qs.first()
    return wallet.balance_cents if wallet else 0


async def _locked_wallet(conn: BaseDBAsyncClient, user_id: UUID) -> Wallet:
    wallet = (
        await Wallet.filter(user_id=user_id).select_for_update().using_db(conn).first()
    )
    if wallet is None:
        # A concurrent creator makes this insert fail with IntegrityError,
        # which the surrounding run_atomic retries.
        wallet = await Wallet.create(user_id=user_id, balance_cents=0, using_db=conn)
    return wallet


async def adjust(
    conn: BaseDBAsyncClient,
    user_id: UUID,
    amount_cents: int,
    category: TransactionCategory,
    description: str,
    booking_id: UUID | None = None,
) -> WalletTransaction:
    """
    Apply a signed delta to a user's wallet and log it.

    Debits re-read the balance under the row lock, so the check and the
    update can't interleave with another transaction's debit.
    """
    amount_cents = int(amount_cents)
    wallet = await _locked_wallet(conn, user_id)
    if wallet.balance_cents + amount_cents < 0:
        raise InsufficientFunds(
            user_id=user_id,
            balance_cents=wallet.balance_cents,
            requested_cents=-amount_cents,
        )

    wallet.balance_cents += amount_cents
    await wallet.save(using_db=conn, update_fields=["balance_cents", "updated_at"])

    txn = await WalletTransaction.create(
        wallet_id=wallet.id,
        booking_id=booking_id,
        amount_cents=amount_cents,
        direction=(
            TransactionDirection.DEBIT if amount_cents < 0 else TransactionDirection.CREDIT
        ),
        category=category,
        description=description[:255],
        using_db=conn,
    )
    log.info(
        "wallet {} {} {} ({}) booking={}",
        user_id,
        txn.direction.value,
        abs(amount_cents),
        category.value,
        booking_id,
    )
    return txn


@dataclass(frozen=True)
class WalletSummary:
    user_id: UUID
    balance_cents: int
    transactions: list[WalletTransaction]


async def wallet_summary(user_id: UUID, limit: int = 50) -> WalletSummary:
    wallet = await Wallet.get_or_none(user_id=user_id)
    if wallet is None:
        return WalletSummary(user_id=user_id, balance_cents=0, transactions=[])
    transactions = await WalletTransaction.filter(wallet_id=wallet.id).limit(limit)
    return WalletSummary(
        user_id=user_id, balance_cents=wallet.balance_cents, transactions=transactions
    )
