"""Core data models for Pandora."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional


@dataclass
class FactoidResponse:
    """One learned reply.

    Embedded in a :class:`Factoid` only ``response`` and the dates are stored;
    standalone records in the response bucket also carry ``id`` and
    ``factoid_id``.
    """

    response: str
    date_created: Optional[datetime] = None
    date_edited: Optional[datetime] = None
    id: int = 0
    factoid_id: int = 0


@dataclass
class Factoid:
    trigger: str
    id: int = 0
    protected: bool = False
    date_created: Optional[datetime] = None
    date_edited: Optional[datetime] = None
    responses: Dict[int, FactoidResponse] = field(default_factory=dict)
    # highest response key ever issued; keys of deleted responses are not reused
    response_seq: int = 0

    def next_response_key(self) -> int:
        """Return the key a newly added response receives (current max + 1)."""

        return max(max(self.responses, default=0), self.response_seq) + 1

    def add_response(self, response: FactoidResponse) -> int:
        key = self.next_response_key()
        self.responses[key] = response
        self.response_seq = key
        return key

    def response_texts(self) -> List[str]:
        return [self.responses[key].response for key in sorted(self.responses)]

    def find_response(self, text: str) -> Optional[int]:
        for key, value in self.responses.items():
            if value.response == text:
                return key
        return None


__all__ = ["Factoid", "FactoidResponse"]
