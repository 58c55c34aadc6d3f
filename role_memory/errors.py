"""
Error taxonomy for the role memory subsystem.

Validation errors describe a bad tool payload and are returned to the
upstream model as a short diagnostic. Storage errors are terminal for the
single operation that raised them.
"""

from typing import Any, Iterable, List


class RoleMemoryError(Exception):
    """Base class for all role memory errors."""


class MemoryValidationError(RoleMemoryError):
    """A payload could not be turned into a valid request or record."""


class MissingRequiredField(MemoryValidationError):
    """One or more required fields were absent after every extraction attempt."""

    def __init__(self, fields: Iterable[str]):
        self.fields: List[str] = list(fields)
        super().__init__(f"missing required field(s): {', '.join(self.fields)}")


class MalformedPayload(MemoryValidationError):
    """The payload matched none of the accepted shapes."""


class OutOfRangeValue(MemoryValidationError):
    """A field value could not be coerced into its allowed range."""

    def __init__(self, field: str, value: Any, reason: str = ""):
        self.field = field
        self.value = value
        detail = f" ({reason})" if reason else ""
        super().__init__(f"invalid value for {field}: {value!r}{detail}")


class NotFoundError(RoleMemoryError):
    """No memory with the given id exists for the role."""

    def __init__(self, memory_id: str, role_id: str = ""):
        self.memory_id = memory_id
        self.role_id = role_id
        super().__init__(f"memory not found: {memory_id}")


class StorageIOError(RoleMemoryError):
    """The persistence layer failed."""
