"""Error taxonomy for the follower: startup failures and session failures."""


class TailError(Exception):
    """Base class for all follower errors."""


class TargetMissingError(TailError, FileNotFoundError):
    """Raised when a session is built for a file that does not exist."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"source[{path}] does not exist")


class PositionLockError(TailError):
    """Raised when another reader already holds the position record lock."""

    def __init__(self, position_file: str):
        self.position_file = position_file
        super().__init__(f"another program holds an overlapping lock [{position_file}]")


class SessionFailedError(TailError):
    """Raised by the controller once its watch loop has unwound after a session crashed.

    The session's original exception is chained as ``__cause__``.
    """
