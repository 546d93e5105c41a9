from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class RecordScope:
    """Row filter handed to list queries.

    ``seller_id`` set means only records owned by that seller are visible.
    """

    seller_id: Optional[int] = None

    def sql(self, column: str = "seller_id") -> tuple[str, tuple]:
        if self.seller_id is None:
            return "1=1", ()
        return f"{column} = ?", (int(self.seller_id),)


ALL_RECORDS = RecordScope()

ROLE_SEES_ALL = {"admin", "viewer"}


def scope_for(role: str, user_id: int) -> RecordScope:
    if role in ROLE_SEES_ALL:
        return ALL_RECORDS
    return RecordScope(seller_id=int(user_id))
