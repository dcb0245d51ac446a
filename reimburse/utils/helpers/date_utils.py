"""Date helpers shared by models and services."""

from datetime import date, datetime, timezone
from typing import Optional, Union


def utc_now() -> datetime:
    """Timezone-aware current time used for every trail timestamp."""
    return datetime.now(timezone.utc)


def format_receipt_date(value: Union[date, datetime, str, None]) -> Optional[str]:
    """Render a receipt date as YYYY-MM-DD for log payloads."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return str(value)
