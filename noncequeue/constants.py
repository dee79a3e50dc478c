from typing import Dict

# Reconciler defaults
DEFAULT_PROCESS_INTERVAL: float = 2.0  # seconds between reconciler runs
DEFAULT_QUEUE_TTL: float = 15 * 60  # seconds an operation may wait in the queue
DEFAULT_RPC_TIMEOUT: float = 10.0
DEFAULT_MEMPOOL_DEDUP_TTL: int = 300
DEFAULT_MEMPOOL_DEDUP_SIZE: int = 10_000

# Canonical Multicall3 deployment, identical on most EVM chains
MULTICALL3_ADDRESS: str = "0xcA11bde05977b3631167028862bE2a173976CA11"

# Low 64 bits of an ERC-4337 nonce are the sequence, the upper 192 bits the key
NONCE_VALUE_BITS: int = 64
NONCE_VALUE_MASK: int = (1 << NONCE_VALUE_BITS) - 1

# Error codes
ERROR_CORE_INIT: int = 1005
ERROR_WEB3_INIT: int = 1006
ERROR_CONFIG_LOAD: int = 1007
ERROR_USER_OPERATION: int = 1101
ERROR_LEDGER_READ: int = 1102

# Error messages with default fallbacks
ERROR_MESSAGES: Dict[int, str] = {
    ERROR_CORE_INIT: "Core initialization failed",
    ERROR_WEB3_INIT: "Web3 connection failed",
    ERROR_CONFIG_LOAD: "Configuration loading failed",
    ERROR_USER_OPERATION: "Malformed user operation",
    ERROR_LEDGER_READ: "Aggregated nonce read failed",
}


def get_error_message(code: int, default: str = "Unknown error") -> str:
    """Get error message for error code with fallback to default message."""
    return ERROR_MESSAGES.get(code, default)
