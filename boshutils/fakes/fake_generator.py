"""A predictable UUID generator for tests."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from boshutils.uuidgen import Generator


@dataclass
class FakeGenerator(Generator):
    """Hands out "fake-uuid-N" values unless a fixed UUID or an error is set."""

    generated_uuid: str = ""
    next_uuid: int = 0
    generate_error: Optional[BaseException] = None

    def generate(self) -> str:
        if not self.generated_uuid and self.generate_error is None:
            value = f"fake-uuid-{self.next_uuid}"
            self.next_uuid += 1
            return value
        if self.generate_error is not None:
            raise self.generate_error
        return self.generated_uuid