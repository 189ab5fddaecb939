# tests/services/test_lead_aggregations.py
"""
Tests for lead date parsing and weekly/monthly actuals.

Run with: pytest backend/tests/services/test_lead_aggregations.py -v
"""

import pytest
from datetime import date

from leadsync.fields import FieldBag
from leadsync.services.lead_aggregations import (
    calculate_actuals, iso_week_start, lead_date_value, parse_lead_date
)


pytestmark = pytest.mark.unit


# ============================================================================
# TEST: Date Parsing
# ============================================================================

class TestParseLeadDate:

    @pytest.mark.parametrize("value,expected", [
        ("03.03.25", date(2025, 3, 3)),
        ("3.3.2025", date(2025, 3, 3)),
        ("2025-03-04", date(2025, 3, 4)),
        ("2025-03-04T10:15:00Z", date(2025, 3, 4)),
        ("04/03/2025", date(2025, 3, 4)),
        ("4/3/25", date(2025, 3, 4)),
        ("2025-03-04 10:15", date(2025, 3, 4)),
    ])
    def test_accepted_formats(self, value, expected):
        assert parse_lead_date(value) == expected

    def test_dotted_pattern_is_day_first(self):
        # Generic parsing would read this month-first
        assert parse_lead_date("01.02.25") == date(2025, 2, 1)

    @pytest.mark.parametrize("value", ["", None, "   ", "tomorrow", "31.02.25", "18990101"])
    def test_rejected(self, value):
        assert parse_lead_date(value) is None

    def test_known_header_wins(self):
        bag = FieldBag([("Notes", "01.01.25"), ("Date", "05.03.25")])
        assert lead_date_value(bag) == "05.03.25"

    def test_falls_back_to_date_shaped_value(self):
        bag = FieldBag([("Name", "Alice"), ("Met on", "05/03/2025")])
        assert lead_date_value(bag) == "05/03/2025"

    def test_no_date(self):
        assert lead_date_value(FieldBag([("Name", "Alice")])) == ""


# ============================================================================
# TEST: Actuals
# ============================================================================

class TestCalculateActuals:

    def test_iso_week_start_is_monday(self):
        assert iso_week_start(date(2025, 3, 9)) == date(2025, 3, 3)
        assert iso_week_start(date(2025, 3, 3)) == date(2025, 3, 3)

    def test_weekly_and_monthly(self, reporting_day):
        bags = [
            FieldBag([("Name", "A"), ("Date", "03.03.25")]),   # this week, this month
            FieldBag([("Name", "B"), ("Date", "09.03.25")]),   # Sunday, this week
            FieldBag([("Name", "C"), ("Date", "10.03.25")]),   # next week, this month
            FieldBag([("Name", "D"), ("Date", "28.02.25")]),   # last month
            FieldBag([("Name", "E"), ("Date", "not a date")]),
        ]

        actuals = calculate_actuals(bags, today=reporting_day)

        assert actuals.weekly_actual == 2
        assert actuals.monthly_actual == 3

    def test_month_boundary_week(self):
        # Week of Monday 2025-03-31 spans into April
        bags = [FieldBag([("Date", "31.03.25")]), FieldBag([("Date", "01.04.25")])]
        actuals = calculate_actuals(bags, today=date(2025, 4, 2))
        assert actuals.weekly_actual == 2
        assert actuals.monthly_actual == 1

    def test_aggregations(self, reporting_day):
        bags = [
            FieldBag([("Date", "03.03.25"), ("Team Member", "Sam"), ("Channel of Lead", "Referral")]),
            FieldBag([("Date", "03.03.25"), ("Team Member", "Sam"), ("Channel of Lead", "Website")]),
            FieldBag([("Date", "10.02.25"), ("Team Member", "Kim"), ("Channel of Lead", "Referral")]),
            FieldBag([("Date", "11.02.25")]),
        ]

        aggregations = calculate_actuals(bags, today=reporting_day).aggregations

        assert aggregations["totals_by_day"] == [
            {"date": "2025-02-10", "count": 1},
            {"date": "2025-02-11", "count": 1},
            {"date": "2025-03-03", "count": 2},
        ]
        assert aggregations["totals_by_week"] == [
            {"year": 2025, "iso_week": 7, "count": 2},
            {"year": 2025, "iso_week": 10, "count": 2},
        ]
        assert aggregations["totals_by_month"] == [
            {"year": 2025, "month": 2, "count": 2},
            {"year": 2025, "month": 3, "count": 2},
        ]
        assert aggregations["breakdown_by_team_member"][0] == {"team_member": "Sam", "count": 2}
        assert {"team_member": "Unknown", "count": 1} in aggregations["breakdown_by_team_member"]
        assert aggregations["breakdown_by_platform"][0] == {"platform": "Referral", "count": 2}

    def test_empty(self, reporting_day):
        actuals = calculate_actuals([], today=reporting_day)
        assert actuals.weekly_actual == 0
        assert actuals.monthly_actual == 0
        assert actuals.aggregations["totals_by_day"] == []
