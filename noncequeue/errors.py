from noncequeue.constants import (
    ERROR_CONFIG_LOAD,
    ERROR_LEDGER_READ,
    ERROR_USER_OPERATION,
    get_error_message,
)


class Nonce_Queue_Error(Exception):
    """Base exception for nonce queue failures."""

    code: int = 0

    def __init__(self, message: str = ""):
        self.message = message or get_error_message(self.code)
        super().__init__(self.message)


class User_Operation_Error(Nonce_Queue_Error):
    """Raised when a user operation payload cannot be derived or hashed."""

    code = ERROR_USER_OPERATION


class Ledger_Read_Error(Nonce_Queue_Error):
    """Raised when an aggregated nonce read fails as a whole."""

    code = ERROR_LEDGER_READ


class Configuration_Error(Nonce_Queue_Error):
    """Raised for missing or malformed configuration values."""

    code = ERROR_CONFIG_LOAD
