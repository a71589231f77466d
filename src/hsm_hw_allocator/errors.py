"""Errors raised by control plane adapters."""


class BackendError(Exception):
    """Raised when a call to the control plane fails."""


class GroupNotFoundError(BackendError):
    """Raised when a group does not exist in the group service."""

    def __init__(self, name: str):
        super().__init__(f"Group '{name}' not found")
        self.name = name
