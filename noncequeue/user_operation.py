"""
User operation types and the pure derivation helpers the nonce queue relies on.

Two EntryPoint versions are supported. v0.6 operations carry ``initCode`` and
``paymasterAndData`` as opaque byte strings; v0.7 operations carry the unpacked
factory/paymaster fields and are packed again for hashing. A compressed
operation wraps an already inflated operation and is always hashed through it.
"""
from dataclasses import dataclass
from typing import Optional, Tuple, Union

from eth_abi import encode
from eth_typing import ChecksumAddress
from eth_utils import keccak, to_checksum_address
from hexbytes import HexBytes

from noncequeue.constants import NONCE_VALUE_BITS, NONCE_VALUE_MASK
from noncequeue.errors import User_Operation_Error

UINT128_MAX = (1 << 128) - 1


@dataclass(frozen=True)
class User_Operation_V06:
    sender: ChecksumAddress
    nonce: int
    init_code: HexBytes
    call_data: HexBytes
    call_gas_limit: int
    verification_gas_limit: int
    pre_verification_gas: int
    max_fee_per_gas: int
    max_priority_fee_per_gas: int
    paymaster_and_data: HexBytes
    signature: HexBytes


@dataclass(frozen=True)
class User_Operation_V07:
    sender: ChecksumAddress
    nonce: int
    factory: Optional[ChecksumAddress]
    factory_data: HexBytes
    call_data: HexBytes
    call_gas_limit: int
    verification_gas_limit: int
    pre_verification_gas: int
    max_fee_per_gas: int
    max_priority_fee_per_gas: int
    paymaster: Optional[ChecksumAddress]
    paymaster_verification_gas_limit: int
    paymaster_post_op_gas_limit: int
    paymaster_data: HexBytes
    signature: HexBytes


User_Operation = Union[User_Operation_V06, User_Operation_V07]


@dataclass(frozen=True)
class Compressed_User_Operation:
    """Operation submitted through an inflator contract, kept with its inflated form."""
    compressed_calldata: HexBytes
    inflated_op: User_Operation
    inflator_address: ChecksumAddress


Mempool_User_Operation = Union[User_Operation_V06, User_Operation_V07, Compressed_User_Operation]


def derive_user_operation(mempool_user_operation: Mempool_User_Operation) -> User_Operation:
    """Return the plain user operation behind a mempool entry."""
    if isinstance(mempool_user_operation, Compressed_User_Operation):
        return mempool_user_operation.inflated_op
    if isinstance(mempool_user_operation, (User_Operation_V06, User_Operation_V07)):
        return mempool_user_operation
    raise User_Operation_Error(
        f"Unsupported user operation type: {type(mempool_user_operation).__name__}"
    )


def is_version_06(user_operation: User_Operation) -> bool:
    return isinstance(user_operation, User_Operation_V06)


def get_nonce_key_and_value(nonce: int) -> Tuple[int, int]:
    """Split a raw nonce into its 192-bit key and 64-bit sequence value."""
    if nonce < 0:
        raise User_Operation_Error(f"Nonce must be non-negative, got {nonce}")
    return nonce >> NONCE_VALUE_BITS, nonce & NONCE_VALUE_MASK


def _pack_uints(high: int, low: int) -> bytes:
    if not (0 <= high <= UINT128_MAX and 0 <= low <= UINT128_MAX):
        raise User_Operation_Error("Gas value does not fit in uint128")
    return ((high << 128) | low).to_bytes(32, "big")


def get_init_code(user_operation: User_Operation_V07) -> bytes:
    if not user_operation.factory:
        return b""
    return bytes(HexBytes(user_operation.factory)) + bytes(user_operation.factory_data)


def get_paymaster_and_data(user_operation: User_Operation_V07) -> bytes:
    if not user_operation.paymaster:
        return b""
    return (
        bytes(HexBytes(user_operation.paymaster))
        + user_operation.paymaster_verification_gas_limit.to_bytes(16, "big")
        + user_operation.paymaster_post_op_gas_limit.to_bytes(16, "big")
        + bytes(user_operation.paymaster_data)
    )


def _pack_user_operation(user_operation: User_Operation) -> bytes:
    if isinstance(user_operation, User_Operation_V06):
        return encode(
            [
                "address", "uint256", "bytes32", "bytes32", "uint256",
                "uint256", "uint256", "uint256", "uint256", "bytes32",
            ],
            [
                user_operation.sender,
                user_operation.nonce,
                keccak(bytes(user_operation.init_code)),
                keccak(bytes(user_operation.call_data)),
                user_operation.call_gas_limit,
                user_operation.verification_gas_limit,
                user_operation.pre_verification_gas,
                user_operation.max_fee_per_gas,
                user_operation.max_priority_fee_per_gas,
                keccak(bytes(user_operation.paymaster_and_data)),
            ],
        )

    return encode(
        ["address", "uint256", "bytes32", "bytes32", "bytes32", "uint256", "bytes32", "bytes32"],
        [
            user_operation.sender,
            user_operation.nonce,
            keccak(get_init_code(user_operation)),
            keccak(bytes(user_operation.call_data)),
            _pack_uints(user_operation.verification_gas_limit, user_operation.call_gas_limit),
            user_operation.pre_verification_gas,
            _pack_uints(user_operation.max_priority_fee_per_gas, user_operation.max_fee_per_gas),
            keccak(get_paymaster_and_data(user_operation)),
        ],
    )


def get_user_operation_hash(
    user_operation: User_Operation,
    entry_point: str,
    chain_id: int,
) -> HexBytes:
    """Compute the EntryPoint's userOpHash for the given chain."""
    try:
        packed = _pack_user_operation(user_operation)
        return HexBytes(
            keccak(
                encode(
                    ["bytes32", "address", "uint256"],
                    [keccak(packed), to_checksum_address(entry_point), chain_id],
                )
            )
        )
    except User_Operation_Error:
        raise
    except Exception as e:
        raise User_Operation_Error(f"Failed to hash user operation: {e}") from e
