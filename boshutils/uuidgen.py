"""UUID generation."""

from __future__ import annotations

import abc
import uuid


class Generator(abc.ABC):
    """Produces UUID strings."""

    @abc.abstractmethod
    def generate(self) -> str:
        """Return a new UUID in canonical string form."""


class UUIDv4Generator(Generator):
    """Generates random (version 4) UUIDs."""

    def generate(self) -> str:
        try:
            return str(uuid.uuid4())
        except OSError as exc:
            raise RuntimeError("Generating V4 uuid") from exc