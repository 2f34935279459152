"""
Reference vs resolved entity

A related record is either known only by its id (``Reference``) or fully
loaded (``Resolved``). ``ref_id`` turns either into the id string so callers
never have to check which one they were handed.
"""

from dataclasses import dataclass
from typing import Any, Optional, Union


@dataclass(frozen=True)
class Reference:
    id: Any


@dataclass(frozen=True)
class Resolved:
    entity: Any

    @property
    def id(self) -> Any:
        return self.entity.id


Ref = Union[Reference, Resolved]


def ref_id(ref: Optional[Ref]) -> Optional[str]:
    if ref is None:
        return None
    return None if ref.id is None else str(ref.id)


def ref_of(entity: Any, fallback_id: Any) -> Ref:
    """Resolved when the related row is loaded, Reference otherwise"""
    if entity is not None:
        return Resolved(entity)
    return Reference(fallback_id)
