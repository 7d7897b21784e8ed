from enum import StrEnum
from enum import auto
from typing import Any
from typing import Final
from typing import Self

from pydantic import GetCoreSchemaHandler
from pydantic_core import CoreSchema
from pydantic_core import core_schema

MAX_TCP_PORT: Final[int] = 65535


class UpperCaseStrEnum(StrEnum):
    """A StrEnum that automatically converts enum member names to uppercase values."""

    @staticmethod
    def _generate_next_value_(
        name: str,
        start: int,
        count: int,
        last_values: list[str],
    ) -> str:
        return name.upper()


class SshdState(UpperCaseStrEnum):
    """Lifecycle state of a throwaway sshd instance."""

    CONSTRUCTED = auto()
    RUNNING = auto()
    STOPPED = auto()


class BundledKey(UpperCaseStrEnum):
    """Names of the key material shipped with the package."""

    HOST_PRIVATE_KEY = auto()
    AUTHORIZED_KEYS = auto()
    CLIENT_PRIVATE_KEY = auto()


class InvalidPortError(ValueError):
    """Raised when a port number is outside the valid TCP range."""


class Port(int):
    """A TCP port number between 1 and 65535 (inclusive)."""

    def __new__(cls, value: int) -> Self:
        if not 1 <= value <= MAX_TCP_PORT:
            raise InvalidPortError(f"{cls.__name__} must be between 1 and {MAX_TCP_PORT}, got {value}")
        return super().__new__(cls, value)

    @classmethod
    def __get_pydantic_core_schema__(
        cls,
        source_type: Any,
        handler: GetCoreSchemaHandler,
    ) -> CoreSchema:
        return core_schema.no_info_after_validator_function(
            cls,
            core_schema.int_schema(ge=1, le=MAX_TCP_PORT),
        )
