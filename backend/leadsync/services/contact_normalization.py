"""Contact data normalization used when a lead becomes a contact."""

import re
import logging
from typing import Dict, Optional
import phonenumbers
from nameparser import HumanName

from leadsync.config import settings
from leadsync.fields import FieldBag

logger = logging.getLogger(__name__)


class NormalizationService:
    """Extract and standardize contact attributes from a lead's field bag."""

    # Header aliases per attribute, in priority order
    EMAIL_HEADERS = ('Email', 'email', 'E-mail', 'Email Address', 'emailAddress')
    NAME_HEADERS = ('Name', 'name', 'Full Name', 'Contact Name', 'contactName')
    FIRST_NAME_HEADERS = ('First Name', 'firstName', 'first_name')
    LAST_NAME_HEADERS = ('Last Name', 'lastName', 'last_name')
    COMPANY_HEADERS = ('Company', 'company', 'Company Name', 'companyName')
    TITLE_HEADERS = ('Title', 'title', 'Job Title', 'jobTitle', 'Position', 'Role')
    PHONE_HEADERS = ('Phone', 'phone', 'Mobile', 'mobile', 'Phone Number', 'phoneNumber')

    @staticmethod
    def normalize_email(email: Optional[str]) -> str:
        """
        Normalize email address.
        - Convert to lowercase
        - Strip whitespace
        """
        if not email:
            return ""
        return email.lower().strip()

    @staticmethod
    def extract_domain(email: Optional[str]) -> Optional[str]:
        """Extract domain from email address."""
        if not email or '@' not in email:
            return None
        return email.rsplit('@', 1)[1].lower().strip() or None

    @staticmethod
    def normalize_name(first_name: Optional[str], last_name: Optional[str],
                       full_name: Optional[str] = None) -> Dict[str, Optional[str]]:
        """
        Normalize and parse names.
        Handles various name formats and returns standardized first/last names.
        """
        if first_name and last_name:
            return {
                'first_name': first_name.strip(),
                'last_name': last_name.strip()
            }

        if full_name and full_name.strip():
            parsed = HumanName(full_name.strip())
            return {
                'first_name': parsed.first or first_name or None,
                'last_name': parsed.last or last_name or None
            }

        return {
            'first_name': first_name.strip() if first_name else None,
            'last_name': last_name.strip() if last_name else None
        }

    @staticmethod
    def normalize_phone(phone: Optional[str], default_region: Optional[str] = None) -> Optional[str]:
        """
        Normalize phone number to E.164 format.
        Returns the original value if it cannot be parsed.
        """
        if not phone or not phone.strip():
            return None

        try:
            cleaned = re.sub(r'[\s\-\(\)\.]', '', phone)
            parsed = phonenumbers.parse(cleaned, default_region or settings.DEFAULT_PHONE_REGION)
            if phonenumbers.is_valid_number(parsed):
                return phonenumbers.format_number(
                    parsed,
                    phonenumbers.PhoneNumberFormat.E164
                )
        except phonenumbers.NumberParseException:
            logger.debug(f"Failed to parse phone number: {phone}")

        return phone.strip()

    def extract_contact(self, fields: FieldBag) -> Dict[str, Optional[str]]:
        """Contact attributes from a lead row; ``email`` is '' when absent."""
        names = self.normalize_name(
            first_name=fields.get(*self.FIRST_NAME_HEADERS) or None,
            last_name=fields.get(*self.LAST_NAME_HEADERS) or None,
            full_name=fields.get(*self.NAME_HEADERS) or None
        )
        return {
            'email': self.normalize_email(fields.get(*self.EMAIL_HEADERS)),
            'first_name': names['first_name'],
            'last_name': names['last_name'],
            'company_name': fields.get(*self.COMPANY_HEADERS).strip() or None,
            'job_title': fields.get(*self.TITLE_HEADERS).strip() or None,
            'phone': self.normalize_phone(fields.get(*self.PHONE_HEADERS)),
        }


# Singleton instance
normalization_service = NormalizationService()
