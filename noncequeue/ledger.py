import asyncio
import enum
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from eth_typing import ChecksumAddress
from hexbytes import HexBytes
from web3 import AsyncWeb3

from noncequeue.constants import MULTICALL3_ADDRESS
from noncequeue.errors import Ledger_Read_Error

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Nonce_Read_Request:
    entry_point: ChecksumAddress
    sender: ChecksumAddress
    nonce_key: int


@dataclass(frozen=True)
class Nonce_Read_Result:
    """Outcome of reading one (sender, key) nonce; exactly one of value/error is set."""
    value: Optional[int] = None
    error: Optional[BaseException] = None

    @property
    def success(self) -> bool:
        return self.error is None

    @classmethod
    def ok(cls, value: int) -> "Nonce_Read_Result":
        return cls(value=value)

    @classmethod
    def failure(cls, error: BaseException) -> "Nonce_Read_Result":
        return cls(error=error)


class Read_Strategy(enum.Enum):
    BATCH = "batch"
    FALLBACK = "fallback"


class Read_State(enum.Enum):
    BATCH_ATTEMPT = "batch_attempt"
    FALLBACK_ATTEMPT = "fallback_attempt"
    RESOLVED = "resolved"


@dataclass(frozen=True)
class Nonce_Read_Outcome:
    results: List[Nonce_Read_Result]
    strategy: Read_Strategy


class Ledger_Reader:
    """
    Reads current EntryPoint nonce values for many (sender, key) pairs.

    Subclasses provide ``batch_read`` (one aggregated call, raises on total
    failure) and ``single_read`` (one call per pair). ``read_nonces`` drives
    the batch attempt and degrades to concurrent per-pair reads when the
    aggregated call fails.
    """

    async def batch_read(self, requests: Sequence[Nonce_Read_Request]) -> List[Nonce_Read_Result]:
        raise NotImplementedError

    async def single_read(self, request: Nonce_Read_Request) -> int:
        raise NotImplementedError

    async def read_nonces(self, requests: Sequence[Nonce_Read_Request]) -> Nonce_Read_Outcome:
        """Batch read with per-request fallback: BATCH_ATTEMPT -> (RESOLVED | FALLBACK_ATTEMPT) -> RESOLVED."""
        if not requests:
            return Nonce_Read_Outcome(results=[], strategy=Read_Strategy.BATCH)

        state = Read_State.BATCH_ATTEMPT
        strategy = Read_Strategy.BATCH
        results: List[Nonce_Read_Result] = []

        while state is not Read_State.RESOLVED:
            if state is Read_State.BATCH_ATTEMPT:
                try:
                    results = await self.batch_read(requests)
                    state = Read_State.RESOLVED
                except Exception as e:
                    logger.error(f"Error fetching nonces with multicall: {e!r} ❌")
                    state = Read_State.FALLBACK_ATTEMPT
            else:
                strategy = Read_Strategy.FALLBACK
                results = await self._read_individually(requests)
                state = Read_State.RESOLVED

        return Nonce_Read_Outcome(results=results, strategy=strategy)

    async def _read_individually(self, requests: Sequence[Nonce_Read_Request]) -> List[Nonce_Read_Result]:
        return list(await asyncio.gather(*(self._read_one(request) for request in requests)))

    async def _read_one(self, request: Nonce_Read_Request) -> Nonce_Read_Result:
        try:
            return Nonce_Read_Result.ok(await self.single_read(request))
        except Exception as e:
            return Nonce_Read_Result.failure(e)


class Entry_Point_Nonce_Reader(Ledger_Reader):
    """Ledger reader backed by ``EntryPoint.getNonce`` and Multicall3 ``aggregate3``."""

    BLOCK_IDENTIFIER = "latest"

    def __init__(
        self,
        web3: AsyncWeb3,
        entry_point_abi: List[Dict[str, Any]],
        multicall3_abi: List[Dict[str, Any]],
        multicall_address: str = MULTICALL3_ADDRESS,
    ):
        self.web3 = web3
        self.entry_point_abi = entry_point_abi
        self.multicall = self.web3.eth.contract(
            address=self.web3.to_checksum_address(multicall_address),
            abi=multicall3_abi,
        )
        self._entry_points: Dict[str, Any] = {}

    def _entry_point_contract(self, address: str) -> Any:
        contract = self._entry_points.get(address)
        if contract is None:
            contract = self.web3.eth.contract(
                address=self.web3.to_checksum_address(address),
                abi=self.entry_point_abi,
            )
            self._entry_points[address] = contract
        return contract

    async def batch_read(self, requests: Sequence[Nonce_Read_Request]) -> List[Nonce_Read_Result]:
        calls = [
            (
                request.entry_point,
                True,
                bytes(HexBytes(self._entry_point_contract(request.entry_point).encode_abi(
                    "getNonce", args=[request.sender, request.nonce_key]
                ))),
            )
            for request in requests
        ]
        try:
            responses = await self.multicall.functions.aggregate3(calls).call(
                block_identifier=self.BLOCK_IDENTIFIER
            )
        except Exception as e:
            raise Ledger_Read_Error(f"aggregate3 call failed: {e}") from e

        return [self._decode_response(response) for response in responses]

    def _decode_response(self, response: Sequence[Any]) -> Nonce_Read_Result:
        success, return_data = response
        if not success:
            return Nonce_Read_Result.failure(
                Ledger_Read_Error(f"getNonce reverted: 0x{bytes(return_data).hex()}")
            )
        try:
            (value,) = self.web3.codec.decode(["uint256"], bytes(return_data))
        except Exception as e:
            return Nonce_Read_Result.failure(e)
        return Nonce_Read_Result.ok(value)

    async def single_read(self, request: Nonce_Read_Request) -> int:
        contract = self._entry_point_contract(request.entry_point)
        return await contract.functions.getNonce(request.sender, request.nonce_key).call(
            block_identifier=self.BLOCK_IDENTIFIER
        )
