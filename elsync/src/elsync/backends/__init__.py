"""
Chain-query backend implementations.

Available backends:
- EsploraBackend: Esplora REST API (mempool.space, blockstream.info or self-hosted)

Any other source (an Electrum server connection, a test double) only has to
implement the ChainBackend batch interface.
"""

from elsync.backends.base import ChainBackend, script_to_scripthash
from elsync.backends.esplora import EsploraBackend

__all__ = [
    "ChainBackend",
    "EsploraBackend",
    "script_to_scripthash",
]
