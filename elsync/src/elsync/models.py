"""
Wallet data models.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from elsync.tx import OutPoint, Transaction, TxOut


class ScriptType(str, Enum):
    EXTERNAL = "external"  # receive chain
    INTERNAL = "internal"  # change chain

    @property
    def is_internal(self) -> bool:
        return self is ScriptType.INTERNAL


@dataclass(frozen=True)
class HistoryEntry:
    """One item of a script's history as reported by the remote."""

    height: int  # >0 confirmed, 0 unconfirmed, -1 unconfirmed with unconfirmed parents
    txid: str

    @property
    def confirmation_height(self) -> int | None:
        """Normalized height: None for both unconfirmed states."""
        if self.height <= 0:
            return None
        return self.height


@dataclass(frozen=True)
class ListUnspentEntry:
    height: int
    txid: str
    vout: int

    @property
    def outpoint(self) -> OutPoint:
        return OutPoint(self.txid, self.vout)


@dataclass
class TransactionDetails:
    """Wallet-relative summary of a transaction"""

    txid: str
    transaction: Transaction | None
    received: int  # satoshis paid to wallet scripts
    sent: int  # satoshis spent from wallet outputs
    height: int | None = None
    timestamp: int = 0  # block time, 0 while unknown
    fees: int = 0

    @property
    def is_confirmed(self) -> bool:
        return self.height is not None

    @property
    def net(self) -> int:
        return self.received - self.sent


@dataclass(frozen=True)
class UTXO:
    """An output the wallet can spend"""

    outpoint: OutPoint
    txout: TxOut
    is_internal: bool

    @property
    def value(self) -> int:
        return self.txout.value
