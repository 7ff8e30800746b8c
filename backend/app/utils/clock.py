"""Business-local clock.

Stock dates (entry date, expiry label) are calendar dates printed on the
theater's paperwork, so every instant compared against them is converted
to naive wall time in `settings.business_timezone` first.
"""

from datetime import datetime
from functools import lru_cache
from typing import Callable
from zoneinfo import ZoneInfo

from app.config import settings

Clock = Callable[[], datetime]


@lru_cache(maxsize=8)
def _zone(name: str) -> ZoneInfo:
    return ZoneInfo(name)


def to_local(moment: datetime) -> datetime:
    """Return `moment` as naive business-local wall time.

    Naive datetimes are assumed to already be business-local.
    """
    if moment.tzinfo is None:
        return moment
    return moment.astimezone(_zone(settings.business_timezone)).replace(tzinfo=None)


def now_local() -> datetime:
    """Current business-local wall time (naive)."""
    return datetime.now(_zone(settings.business_timezone)).replace(tzinfo=None)
