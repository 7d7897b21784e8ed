from pathlib import Path

from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field

from imbue.throwaway_sshd.primitives import MAX_TCP_PORT


class FrozenModel(BaseModel):
    """Base class for immutable pydantic models that prevent attribute mutation after construction."""

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        arbitrary_types_allowed=False,
    )


class StagedCredentials(FrozenModel):
    """Key material written into the working directory before sshd starts."""

    directory: Path = Field(description="Caller-owned working directory")
    host_key_path: Path = Field(description="Host private key, mode 600")
    authorized_keys_path: Path = Field(description="Authorized keys file, mode 600")
    pid_file_path: Path = Field(description="PID file written by sshd itself")


class SshdConnectionInfo(FrozenModel):
    """Everything a client needs to log into a throwaway sshd."""

    host: str
    port: int = Field(ge=1, le=MAX_TCP_PORT)
    login: str
    private_key: str = Field(repr=False)
