# src/engine/errors.py
"""
Error types shared by the storage layer and the scan session.
"""
from typing import Optional


class ScannerError(Exception):
    pass


class StorageError(ScannerError):
    pass


class BackendConnectionError(StorageError):
    """Network or authentication failure while opening a backend connection."""


class ProvisionError(StorageError):
    """Schema or database creation failed during setup."""


class PersistError(StorageError):
    """
    An insert failed. `entity` is "flow" or "review"; `index` is the position of
    the failing review inside the flow, None when the flow itself failed.
    """

    def __init__(self, entity: str, flow_id=None, index: Optional[int] = None, reason: str = ""):
        self.entity = entity
        self.flow_id = flow_id
        self.index = index
        self.reason = reason
        if index is None:
            where = f"{entity} {flow_id}"
        else:
            where = f"{entity} #{index} of flow {flow_id}"
        super().__init__(f"Failed to persist {where}: {reason}")


class CommandRejected(ScannerError):
    def __init__(self, command: str, reason: str):
        self.command = command
        self.reason = reason
        super().__init__(f"{command} rejected: {reason}")
