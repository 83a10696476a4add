"""Business-day helpers; business dates are local days in the billing timezone."""

from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

from debitrecon.common.config import settings


def today_business_date(tz_name: str | None = None) -> date:
    return datetime.now(ZoneInfo(tz_name or settings.billing_timezone)).date()


def business_day_end_utc(business_date: date, tz_name: str | None = None) -> datetime:
    """First UTC instant after the local business day."""

    zone = ZoneInfo(tz_name or settings.billing_timezone)
    next_day = datetime.combine(business_date + timedelta(days=1), time.min, tzinfo=zone)
    return next_day.astimezone(timezone.utc)
