"""Lead scoring service - deterministic 0-100 score from sheet fields."""

import logging
from datetime import datetime
from typing import Optional

from leadsync.config import settings
from leadsync.fields import FieldBag
from leadsync.models import LeadRecord, utcnow

logger = logging.getLogger(__name__)


class LeadScoringService:
    """Score = channel + outcome + company size bonus, clamped to [0, 100]."""

    CHANNEL_SCORES = {
        'referral': 90,
        'website': 70,
        'social media': 60,
        'email': 50,
        'cold call': 40,
        'other': 30,
    }
    DEFAULT_CHANNEL_SCORE = 30

    OUTCOME_SCORES = {
        'qualified': 50,
        'interested': 40,
        'follow-up': 30,
        'not interested': 0,
    }
    DEFAULT_OUTCOME_SCORE = 20

    # Header aliases, matched case-insensitively
    CHANNEL_HEADERS = ('Channel of Lead', 'Channel', 'channelOfLead', 'Lead Channel')
    OUTCOME_HEADERS = ('Outcome', 'Lead Outcome', 'leadOutcome')
    COMPANY_SIZE_HEADERS = ('Company Size', 'companySize', 'Size', 'Employees')

    @staticmethod
    def channel_score(channel: Optional[str]) -> int:
        key = (channel or '').strip().lower()
        return LeadScoringService.CHANNEL_SCORES.get(key, LeadScoringService.DEFAULT_CHANNEL_SCORE)

    @staticmethod
    def outcome_score(outcome: Optional[str]) -> int:
        key = (outcome or '').strip().lower()
        return LeadScoringService.OUTCOME_SCORES.get(key, LeadScoringService.DEFAULT_OUTCOME_SCORE)

    @staticmethod
    def company_size_bonus(size: Optional[str]) -> int:
        text = size or ''
        if '1000+' in text or '500+' in text:
            return 20
        if '100+' in text or '50+' in text:
            return 10
        return 0

    def score(self, fields: FieldBag) -> int:
        """Pure scoring function."""
        total = (
            self.channel_score(fields.get_ci(*self.CHANNEL_HEADERS))
            + self.outcome_score(fields.get_ci(*self.OUTCOME_HEADERS))
            + self.company_size_bonus(fields.get_ci(*self.COMPANY_SIZE_HEADERS))
        )
        return max(0, min(100, total))

    def apply(self, lead: LeadRecord, now: Optional[datetime] = None, threshold: Optional[int] = None) -> int:
        """
        Score ``lead`` in place. A ``new`` lead at or above the threshold
        becomes ``qualified``; an existing ``qualified_at`` is never reset.
        """
        threshold = settings.LEAD_QUALIFICATION_THRESHOLD if threshold is None else threshold
        value = self.score(lead.field_bag)
        lead.score = value
        if value >= threshold and lead.status == 'new':
            lead.mark_qualified(now or utcnow())
            logger.info(f"Lead {lead.id} qualified with score {value}")
        return value


# Singleton instance
scoring_service = LeadScoringService()


def score(fields: FieldBag) -> int:
    return scoring_service.score(fields)
