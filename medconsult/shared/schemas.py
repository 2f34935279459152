"""Shared Pydantic field types"""

from datetime import date, datetime
from typing import Annotated

from pydantic import BeforeValidator


def _to_day(v):
    if isinstance(v, datetime):
        return v.date()
    if isinstance(v, str):
        return v.strip()[:10]
    return v


# Calendar day accepting a date, a datetime or an ISO string
CalendarDate = Annotated[date, BeforeValidator(_to_day)]
