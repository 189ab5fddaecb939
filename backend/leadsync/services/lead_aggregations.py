"""Date parsing and weekly/monthly lead counts."""

import logging
import re
from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional
from zoneinfo import ZoneInfo

from leadsync.config import settings
from leadsync.fields import FieldBag

logger = logging.getLogger(__name__)

DOTTED_DATE = re.compile(r"^(\d{1,2})\.(\d{1,2})\.(\d{2}|\d{4})$")
ISO_DATE_PREFIX = re.compile(r"^(\d{4})-(\d{2})-(\d{2})")
SLASHED_DATE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{2}|\d{4})$")
DATE_LIKE = re.compile(r"^\d{1,2}[./]\d{1,2}[./]\d{2,4}$")

DATE_HEADERS = ("Date", "date", "Created At", "createdAt", "First Meeting Date")
TEAM_MEMBER_HEADERS = ("Team Member", "teamMember", "Assigned To", "assignedTo")
PLATFORM_HEADERS = ("Platform", "platform", "Channel of Lead", "channelOfLead", "Source", "source")


def _safe_date(year: int, month: int, day: int) -> Optional[date]:
    try:
        return date(year, month, day)
    except ValueError:
        return None


def _expand_year(raw: str) -> int:
    year = int(raw)
    return year + 2000 if len(raw) == 2 else year


def parse_lead_date(value: Optional[str]) -> Optional[date]:
    """
    Parse spreadsheet dates. Day-first patterns win over generic parsing:
    DD.MM.YY(YY), YYYY-MM-DD..., DD/MM/YY(YY), then ISO-ish (years 2000-2100).
    """
    if not value or not str(value).strip():
        return None
    text = str(value).strip()

    match = DOTTED_DATE.match(text)
    if match:
        parsed = _safe_date(_expand_year(match.group(3)), int(match.group(2)), int(match.group(1)))
        if parsed:
            return parsed

    match = ISO_DATE_PREFIX.match(text)
    if match:
        parsed = _safe_date(int(match.group(1)), int(match.group(2)), int(match.group(3)))
        if parsed:
            return parsed

    match = SLASHED_DATE.match(text)
    if match:
        parsed = _safe_date(_expand_year(match.group(3)), int(match.group(2)), int(match.group(1)))
        if parsed:
            return parsed

    try:
        parsed_dt = datetime.fromisoformat(text)
    except ValueError:
        return None
    if 2000 <= parsed_dt.year <= 2100:
        return parsed_dt.date()
    return None


def lead_date_value(bag: FieldBag) -> str:
    """Raw date string for a lead: known date headers first, then any date-shaped value."""
    value = bag.get(*DATE_HEADERS)
    if value:
        return value
    for candidate in bag.values():
        if candidate and DATE_LIKE.match(candidate.strip()):
            return candidate.strip()
    return ""


def reporting_today(timezone_name: Optional[str] = None) -> date:
    return datetime.now(ZoneInfo(timezone_name or settings.REPORTING_TIMEZONE)).date()


def iso_week_start(day: date) -> date:
    return day - timedelta(days=day.weekday())


@dataclass
class LeadActuals:
    weekly_actual: int = 0
    monthly_actual: int = 0
    aggregations: Dict[str, List[Dict[str, Any]]] = field(default_factory=dict)


def calculate_actuals(leads: Iterable[FieldBag], today: Optional[date] = None) -> LeadActuals:
    """
    Count leads dated in the current week (Monday start) and calendar month,
    plus per-day/week/month totals and team member / platform breakdowns.
    Leads without a parseable date are ignored.
    """
    today = today or reporting_today()
    week_start = iso_week_start(today)
    week_end = week_start + timedelta(days=7)

    weekly = 0
    monthly = 0
    days: Counter = Counter()
    weeks: Counter = Counter()
    months: Counter = Counter()
    team_members: Counter = Counter()
    platforms: Counter = Counter()

    for bag in leads:
        lead_date = parse_lead_date(lead_date_value(bag))
        if lead_date is None:
            continue

        if week_start <= lead_date < week_end:
            weekly += 1
        if lead_date.year == today.year and lead_date.month == today.month:
            monthly += 1

        iso_year, iso_week, _ = lead_date.isocalendar()
        days[lead_date.isoformat()] += 1
        weeks[(iso_year, iso_week)] += 1
        months[(lead_date.year, lead_date.month)] += 1
        team_members[bag.get(*TEAM_MEMBER_HEADERS) or "Unknown"] += 1
        platforms[bag.get(*PLATFORM_HEADERS) or "Unknown"] += 1

    aggregations = {
        "totals_by_day": [{"date": d, "count": c} for d, c in sorted(days.items())],
        "totals_by_week": [
            {"year": y, "iso_week": w, "count": c} for (y, w), c in sorted(weeks.items())
        ],
        "totals_by_month": [
            {"year": y, "month": m, "count": c} for (y, m), c in sorted(months.items())
        ],
        "breakdown_by_team_member": [
            {"team_member": name, "count": c}
            for name, c in sorted(team_members.items(), key=lambda item: -item[1])
        ],
        "breakdown_by_platform": [
            {"platform": name, "count": c}
            for name, c in sorted(platforms.items(), key=lambda item: -item[1])
        ],
    }
    return LeadActuals(weekly_actual=weekly, monthly_actual=monthly, aggregations=aggregations)
