# MIT License
# Copyright (c) 2025 Hashborn

"""
Token ledger collaborator.

The distribution core only needs `balance_of` and `transfer`; `AccountState`
is the sqlite-backed reference ledger used by the node and the tests.
"""

import logging
from typing import Dict, Protocol, runtime_checkable
from pydantic import BaseModel
from ..storage.db import StorageDB

logger = logging.getLogger(__name__)


@runtime_checkable
class TokenLedger(Protocol):
    def balance_of(self, address: str) -> int: ...

    def transfer(self, sender: str, recipient: str, amount: int) -> bool: ...


class Account(BaseModel):
    address: str
    balance: int = 0


class AccountState:
    def __init__(self, db: StorageDB):
        self.db = db
        # Cache for accessed accounts: address -> Account
        self._accounts: Dict[str, Account] = {}
        self.total_minted = 0
        self._load_supply()

    def _load_supply(self):
        val = self.db.get_state("token:total_minted")
        if val:
            self.total_minted = int(val)

    def get_account(self, address: str) -> Account:
        if address in self._accounts:
            return self._accounts[address]

        # Try load from DB
        raw_json = self.db.get_state(f"acc:{address}")
        if raw_json:
            acc = Account.model_validate_json(raw_json)
            self._accounts[address] = acc
            return acc

        # Return generic new account
        return Account(address=address)

    def set_account(self, account: Account):
        """Updates account in local cache."""
        self._accounts[account.address] = account

    def balance_of(self, address: str) -> int:
        return self.get_account(address).balance

    def mint(self, address: str, amount: int):
        """Credits new supply to `address` (deployment funding)."""
        if amount <= 0:
            raise ValueError(f"Mint amount must be positive, got {amount}")
        acc = self.get_account(address)
        acc.balance += amount
        self.set_account(acc)
        self.total_minted += amount
        self.db.apply_batch({
            f"acc:{address}": acc.model_dump_json(),
            "token:total_minted": str(self.total_minted),
        })
        logger.info(f"Minted {amount} to {address}")

    def transfer(self, sender: str, recipient: str, amount: int) -> bool:
        """
        Moves `amount` from sender to recipient and writes both accounts.

        Returns False (nothing changed) when the amount is invalid or the
        sender cannot cover it.
        """
        if amount <= 0:
            return False

        from_acc = self.get_account(sender).model_copy()
        if from_acc.balance < amount:
            logger.warning(f"Transfer rejected: {sender} has {from_acc.balance}, needs {amount}")
            return False

        from_acc.balance -= amount
        if sender == recipient:
            to_acc = from_acc
        else:
            to_acc = self.get_account(recipient).model_copy()
        to_acc.balance += amount

        self.db.apply_batch({
            f"acc:{sender}": from_acc.model_dump_json(),
            f"acc:{recipient}": to_acc.model_dump_json(),
        })
        self.set_account(from_acc)
        self.set_account(to_acc)
        return True

