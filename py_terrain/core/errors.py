"""
Error types for terrain configuration.
"""

from typing import Iterable, Optional, Tuple

from pydantic import ValidationError


class ConfigurationError(ValueError):
    """Raised when terrain parameters cannot be used for evaluation."""

    def __init__(self, message: str, fields: Optional[Iterable[str]] = None):
        super().__init__(message)
        self.fields: Tuple[str, ...] = tuple(fields or ())

    @classmethod
    def from_validation_error(cls, section: str, exc: ValidationError) -> "ConfigurationError":
        """Wrap a pydantic validation failure for the given section."""
        fields = []
        messages = []
        for error in exc.errors():
            name = ".".join(str(part) for part in error.get("loc", ())) or section
            fields.append(name)
            messages.append(f"{name}: {error.get('msg')}")
        return cls(f"Invalid {section} configuration: " + "; ".join(messages), fields)


class DuplicateHeightmapError(RuntimeError):
    """Raised when a heightmap is inserted into a lattice that already has one."""
