import logging
from typing import Dict, List, Tuple

from cachetools import TTLCache
from hexbytes import HexBytes

from noncequeue.constants import DEFAULT_MEMPOOL_DEDUP_SIZE, DEFAULT_MEMPOOL_DEDUP_TTL
from noncequeue.errors import User_Operation_Error
from noncequeue.user_operation import (
    Mempool_User_Operation,
    derive_user_operation,
    get_user_operation_hash,
)

logger = logging.getLogger(__name__)


class Mempool:
    """Downstream pool that accepts user operations released by the nonce queue."""

    def add(self, mempool_user_operation: Mempool_User_Operation, entry_point: str) -> bool:
        raise NotImplementedError


class Memory_Mempool(Mempool):
    """
    In-process pool holding accepted operations until they are taken for bundling.

    An operation hash is accepted at most once while it stays in the recently
    seen cache; admission rules beyond that belong to the bundler.
    """

    def __init__(
        self,
        chain_id: int,
        dedup_ttl: int = DEFAULT_MEMPOOL_DEDUP_TTL,
        dedup_size: int = DEFAULT_MEMPOOL_DEDUP_SIZE,
    ):
        self.chain_id = chain_id
        self.outstanding: Dict[HexBytes, Tuple[Mempool_User_Operation, str]] = {}
        self.seen_hashes: TTLCache = TTLCache(maxsize=dedup_size, ttl=dedup_ttl)

    def add(self, mempool_user_operation: Mempool_User_Operation, entry_point: str) -> bool:
        try:
            op_hash = get_user_operation_hash(
                derive_user_operation(mempool_user_operation), entry_point, self.chain_id
            )
        except User_Operation_Error as e:
            logger.warning(f"Rejected malformed user operation: {e}")
            return False

        if op_hash in self.outstanding or op_hash in self.seen_hashes:
            logger.debug(f"User operation {op_hash.hex()} already known, skipping")
            return False

        self.outstanding[op_hash] = (mempool_user_operation, entry_point)
        self.seen_hashes[op_hash] = True
        logger.debug(f"Accepted user operation {op_hash.hex()}")
        return True

    def take(self) -> List[Tuple[Mempool_User_Operation, str]]:
        """Remove and return every outstanding operation."""
        ops = list(self.outstanding.values())
        self.outstanding.clear()
        return ops

    def __len__(self) -> int:
        return len(self.outstanding)

    def __contains__(self, op_hash: object) -> bool:
        return op_hash in self.outstanding
