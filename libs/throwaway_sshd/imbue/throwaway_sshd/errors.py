class BaseThrowawaySshdError(OSError):
    """Base exception for all throwaway sshd errors.

    Derives from OSError so that every staging, reservation, launch and helper failure
    surfaces to callers as an I/O error.
    """


class BundledKeyError(BaseThrowawaySshdError):
    """Raised when a bundled key resource cannot be read."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Bundled key resource is missing or unreadable: {name}")


class CredentialStagingError(BaseThrowawaySshdError):
    """Raised when the host key or authorized keys file cannot be staged."""


class PortReservationError(BaseThrowawaySshdError):
    """Raised when no ephemeral TCP port could be reserved."""


class SshdSpawnError(BaseThrowawaySshdError):
    """Raised when the sshd executable cannot be found or started."""

    def __init__(self, command: tuple[str, ...], reason: str) -> None:
        self.command = command
        self.reason = reason
        super().__init__(f"Failed to start sshd: {reason}. command=`{' '.join(command)}`")


class SshdNotReadyError(BaseThrowawaySshdError):
    """Raised when sshd exits or stays silent instead of accepting connections."""

    def __init__(self, port: int, reason: str, recent_output: str = "") -> None:
        self.port = port
        self.reason = reason
        self.recent_output = recent_output
        message = f"sshd on port {port} is not ready: {reason}"
        if recent_output:
            message += f"\nRecent output:\n{recent_output}"
        super().__init__(message)


class HelperCommandError(BaseThrowawaySshdError):
    """Raised when a helper command such as `id` or `hostname` fails."""


class InvalidSshdStateError(Exception):
    """Raised when a lifecycle method is called in a state that does not allow it."""


class ProcessError(BaseThrowawaySshdError):
    """Raised when a process fails with a non-zero exit code."""

    def __init__(
        self,
        command: tuple[str, ...],
        stdout: str,
        stderr: str,
        returncode: int | None = None,
        is_output_already_logged: bool = False,
        message: str = "Command failed with non-zero exit code",
    ) -> None:
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        self.command = command
        self.is_output_already_logged = is_output_already_logged
        self.message = message
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        command_str = " ".join(self.command)
        msg = f"{self.message} {self.returncode}. command=`{command_str}`"
        if not self.is_output_already_logged:
            output = self.stdout + "\n" + self.stderr
            if len(output) > 8000:
                output = output[:4000] + "\n... OUTPUT TRUNCATED ...\n" + output[-4000:]
            msg += f"\noutput:\n{output}"
        return msg

    def __str__(self) -> str:
        return self._format_message()


class ProcessTimeoutError(ProcessError):
    """Raised when a process times out."""

    def __init__(
        self,
        command: tuple[str, ...],
        stdout: str,
        stderr: str,
        is_output_already_logged: bool = False,
    ) -> None:
        super().__init__(
            command,
            stdout,
            stderr,
            None,
            is_output_already_logged=is_output_already_logged,
            message="Command timed out",
        )


class ProcessSetupError(ProcessError):
    """Raised when a process fails to start."""

    def __init__(
        self,
        command: tuple[str, ...],
        stdout: str,
        stderr: str,
        is_output_already_logged: bool = False,
    ) -> None:
        super().__init__(
            command,
            stdout,
            stderr,
            None,
            is_output_already_logged=is_output_already_logged,
            message="Command failed to start",
        )
