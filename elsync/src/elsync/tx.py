"""
Raw transaction and block header codec.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field

NULL_TXID = "00" * 32
NULL_VOUT = 0xFFFFFFFF

BLOCK_HEADER_SIZE = 80


class TransactionDecodeError(Exception):
    pass


def hash256(data: bytes) -> bytes:
    return hashlib.sha256(hashlib.sha256(data).digest()).digest()


def read_varint(data: bytes, offset: int) -> tuple[int, int]:
    first = data[offset]
    offset += 1

    if first < 0xFD:
        return first, offset
    if first == 0xFD:
        value = int.from_bytes(data[offset : offset + 2], "little")
        return value, offset + 2
    if first == 0xFE:
        value = int.from_bytes(data[offset : offset + 4], "little")
        return value, offset + 4
    value = int.from_bytes(data[offset : offset + 8], "little")
    return value, offset + 8


def encode_varint(value: int) -> bytes:
    if value < 0xFD:
        return bytes([value])
    if value <= 0xFFFF:
        return b"\xfd" + value.to_bytes(2, "little")
    if value <= 0xFFFFFFFF:
        return b"\xfe" + value.to_bytes(4, "little")
    return b"\xff" + value.to_bytes(8, "little")


@dataclass(frozen=True, order=True)
class OutPoint:
    """Reference to output `vout` of transaction `txid`."""

    txid: str
    vout: int

    def is_null(self) -> bool:
        """Coinbase inputs spend the null outpoint."""
        return self.txid == NULL_TXID and self.vout == NULL_VOUT

    def serialize(self) -> bytes:
        return bytes.fromhex(self.txid)[::-1] + self.vout.to_bytes(4, "little")

    def __str__(self) -> str:
        return f"{self.txid}:{self.vout}"


@dataclass(frozen=True)
class TxIn:
    previous_output: OutPoint
    script_sig: bytes = b""
    sequence: int = 0xFFFFFFFF
    witness: tuple[bytes, ...] = ()


@dataclass(frozen=True)
class TxOut:
    value: int
    script_pubkey: bytes


@dataclass(frozen=True)
class Transaction:
    version: int
    inputs: tuple[TxIn, ...]
    outputs: tuple[TxOut, ...]
    locktime: int
    raw: bytes = field(default=b"", repr=False, compare=False)

    @property
    def has_witness(self) -> bool:
        return any(inp.witness for inp in self.inputs)

    @property
    def txid(self) -> str:
        return hash256(self.serialize(include_witness=False))[::-1].hex()

    def is_coinbase(self) -> bool:
        return len(self.inputs) == 1 and self.inputs[0].previous_output.is_null()

    def serialize(self, include_witness: bool = True) -> bytes:
        with_witness = include_witness and self.has_witness
        parts = [self.version.to_bytes(4, "little")]
        if with_witness:
            parts.append(b"\x00\x01")

        parts.append(encode_varint(len(self.inputs)))
        for inp in self.inputs:
            parts.append(inp.previous_output.serialize())
            parts.append(encode_varint(len(inp.script_sig)))
            parts.append(inp.script_sig)
            parts.append(inp.sequence.to_bytes(4, "little"))

        parts.append(encode_varint(len(self.outputs)))
        for out in self.outputs:
            parts.append(out.value.to_bytes(8, "little"))
            parts.append(encode_varint(len(out.script_pubkey)))
            parts.append(out.script_pubkey)

        if with_witness:
            for inp in self.inputs:
                parts.append(encode_varint(len(inp.witness)))
                for item in inp.witness:
                    parts.append(encode_varint(len(item)))
                    parts.append(item)

        parts.append(self.locktime.to_bytes(4, "little"))
        return b"".join(parts)

    def to_hex(self) -> str:
        return (self.raw or self.serialize()).hex()

    @classmethod
    def from_hex(cls, tx_hex: str) -> Transaction:
        try:
            tx_bytes = bytes.fromhex(tx_hex.strip())
        except ValueError as e:
            raise TransactionDecodeError(f"Invalid transaction hex: {e}") from e
        return deserialize_transaction(tx_bytes)


def deserialize_transaction(tx_bytes: bytes) -> Transaction:
    try:
        offset = 0
        version = int.from_bytes(tx_bytes[offset : offset + 4], "little")
        offset += 4

        marker_flag = False
        if tx_bytes[offset] == 0x00 and tx_bytes[offset + 1] == 0x01:
            marker_flag = True
            offset += 2

        input_count, offset = read_varint(tx_bytes, offset)
        raw_inputs: list[tuple[OutPoint, bytes, int]] = []

        for _ in range(input_count):
            txid = tx_bytes[offset : offset + 32][::-1].hex()
            offset += 32

            vout = int.from_bytes(tx_bytes[offset : offset + 4], "little")
            offset += 4

            script_len, offset = read_varint(tx_bytes, offset)
            script = tx_bytes[offset : offset + script_len]
            offset += script_len

            sequence = int.from_bytes(tx_bytes[offset : offset + 4], "little")
            offset += 4

            raw_inputs.append((OutPoint(txid, vout), script, sequence))

        output_count, offset = read_varint(tx_bytes, offset)
        outputs: list[TxOut] = []

        for _ in range(output_count):
            value = int.from_bytes(tx_bytes[offset : offset + 8], "little")
            offset += 8

            script_len, offset = read_varint(tx_bytes, offset)
            script = tx_bytes[offset : offset + script_len]
            offset += script_len

            outputs.append(TxOut(value, script))

        witnesses: list[tuple[bytes, ...]] = [() for _ in range(input_count)]
        if marker_flag:
            for i in range(input_count):
                stack_count, offset = read_varint(tx_bytes, offset)
                stack = []
                for _ in range(stack_count):
                    item_len, offset = read_varint(tx_bytes, offset)
                    stack.append(tx_bytes[offset : offset + item_len])
                    offset += item_len
                witnesses[i] = tuple(stack)

        if offset + 4 != len(tx_bytes):
            raise ValueError(f"{len(tx_bytes) - offset - 4} trailing bytes")
        locktime = int.from_bytes(tx_bytes[offset : offset + 4], "little")

    except (IndexError, ValueError) as e:
        raise TransactionDecodeError(f"Failed to parse transaction: {e}") from e

    inputs = tuple(
        TxIn(prevout, script, sequence, witnesses[i])
        for i, (prevout, script, sequence) in enumerate(raw_inputs)
    )
    return Transaction(version, inputs, tuple(outputs), locktime, raw=tx_bytes)


@dataclass(frozen=True)
class BlockHeader:
    version: int
    prev_block_hash: str
    merkle_root: str
    timestamp: int
    bits: int
    nonce: int
    raw: bytes = field(default=b"", repr=False, compare=False)

    @property
    def block_hash(self) -> str:
        return hash256(self.raw or self.serialize())[::-1].hex()

    def serialize(self) -> bytes:
        return (
            self.version.to_bytes(4, "little")
            + bytes.fromhex(self.prev_block_hash)[::-1]
            + bytes.fromhex(self.merkle_root)[::-1]
            + self.timestamp.to_bytes(4, "little")
            + self.bits.to_bytes(4, "little")
            + self.nonce.to_bytes(4, "little")
        )

    @classmethod
    def from_bytes(cls, data: bytes) -> BlockHeader:
        if len(data) != BLOCK_HEADER_SIZE:
            raise TransactionDecodeError(
                f"Block header must be {BLOCK_HEADER_SIZE} bytes, got {len(data)}"
            )
        return cls(
            version=int.from_bytes(data[0:4], "little"),
            prev_block_hash=data[4:36][::-1].hex(),
            merkle_root=data[36:68][::-1].hex(),
            timestamp=int.from_bytes(data[68:72], "little"),
            bits=int.from_bytes(data[72:76], "little"),
            nonce=int.from_bytes(data[76:80], "little"),
            raw=data,
        )

    @classmethod
    def from_hex(cls, header_hex: str) -> BlockHeader:
        try:
            data = bytes.fromhex(header_hex.strip())
        except ValueError as e:
            raise TransactionDecodeError(f"Invalid header hex: {e}") from e
        return cls.from_bytes(data)
