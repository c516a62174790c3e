"""Errors raised by process supervisors."""


class ProcessExecutionError(Exception):
    """A supervised script exited unsuccessfully or could not be started."""

    def __init__(
        self,
        message: str,
        *,
        exit_code: int = -1,
        stdout: str = "",
        stderr: str = "",
    ) -> None:
        super().__init__(message)
        self.exit_code = exit_code
        self.stdout = stdout
        self.stderr = stderr


class ProcessTimeoutError(ProcessExecutionError):
    """A supervised script exceeded its timeout and was killed."""
