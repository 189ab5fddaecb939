"""Map parsed sheet rows to lead field bags and drop noise rows."""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from leadsync.fields import FieldBag

logger = logging.getLogger(__name__)


@dataclass
class NormalizedLead:
    """Lead-shaped output of the normalizer (not yet persisted)."""
    account_label: str
    fields: FieldBag


@dataclass
class NormalizationResult:
    leads: List[NormalizedLead] = field(default_factory=list)
    data_rows: int = 0
    filtered_empty: int = 0
    filtered_placeholder: int = 0
    filtered_no_name_company: int = 0
    filtered_too_few_fields: int = 0

    @property
    def filtered_total(self) -> int:
        return (
            self.filtered_empty
            + self.filtered_placeholder
            + self.filtered_no_name_company
            + self.filtered_too_few_fields
        )


class RowNormalizer:
    """Header mapping, value clean-up and the inclusion/exclusion rules for sheet rows."""

    # "week commencing" / placeholder markers
    PLACEHOLDER_MARKERS = ("w/c", "w/v")

    TRIMMED_HEADERS = {"Name", "name", "Company", "company", "Phone", "phone", "Mobile", "mobile"}

    HEADER_SCAN_ROWS = 5
    MIN_FIELDS = 2

    @staticmethod
    def detect_header_row(rows: Sequence[Sequence[str]]) -> int:
        """Index of the row with the most non-empty cells among the first few (first wins on ties)."""
        best_index = 0
        best_count = 0
        for index, row in enumerate(rows[:RowNormalizer.HEADER_SCAN_ROWS]):
            count = sum(1 for cell in row if cell and cell.strip())
            if count > best_count:
                best_count = count
                best_index = index
        return best_index

    @staticmethod
    def normalize_value(header: str, value: str) -> str:
        if "email" in header.lower():
            return value.strip().lower()
        if header in RowNormalizer.TRIMMED_HEADERS:
            return value.strip()
        return value

    @staticmethod
    def is_placeholder(bag: FieldBag, account_label: str = "") -> bool:
        for value in [account_label or "", *bag.values()]:
            lowered = value.lower()
            if any(marker in lowered for marker in RowNormalizer.PLACEHOLDER_MARKERS):
                return True
        return False

    @staticmethod
    def has_name_or_company(bag: FieldBag) -> bool:
        return bool(bag.get_ci("Name").strip() or bag.get_ci("Company").strip())

    def build_fields(self, headers: Sequence[str], row: Sequence[str]) -> FieldBag:
        pairs = []
        for index, header in enumerate(headers):
            header = (header or "").strip()
            if not header:
                continue
            value = row[index] if index < len(row) and row[index] is not None else ""
            pairs.append((header, self.normalize_value(header, value)))
        return FieldBag(pairs)

    def normalize(
        self,
        header_row: Sequence[str],
        data_rows: Sequence[Sequence[str]],
        tenant_label: str
    ) -> NormalizationResult:
        """
        Turn data rows into leads, silently dropping:

        1. rows where every cell is blank
        2. rows with a ``w/c`` / ``w/v`` marker in any value, the account
           label included
        3. rows with neither Name nor Company
        4. rows with fewer than two non-empty fields
        """
        result = NormalizationResult(data_rows=len(data_rows))
        headers = [(h or "").strip() for h in header_row]

        for row in data_rows:
            if not row or all(not cell or not cell.strip() for cell in row):
                result.filtered_empty += 1
                continue

            bag = self.build_fields(headers, row)

            if self.is_placeholder(bag, tenant_label):
                result.filtered_placeholder += 1
                continue

            if not self.has_name_or_company(bag):
                result.filtered_no_name_company += 1
                continue

            if bag.non_empty_count() < self.MIN_FIELDS:
                result.filtered_too_few_fields += 1
                continue

            result.leads.append(NormalizedLead(account_label=tenant_label, fields=bag))

        logger.info(
            f"Normalized {len(data_rows)} rows for '{tenant_label}': "
            f"{len(result.leads)} leads, filtered empty={result.filtered_empty} "
            f"placeholder={result.filtered_placeholder} "
            f"no_name_company={result.filtered_no_name_company} "
            f"too_few_fields={result.filtered_too_few_fields}"
        )
        return result

    def normalize_table(self, rows: Sequence[Sequence[str]], tenant_label: str) -> NormalizationResult:
        """Detect the header row, then normalize everything below it."""
        if len(rows) < 2:
            logger.warning(f"Only {len(rows)} rows for '{tenant_label}', need a header and data")
            return NormalizationResult()
        header_index = self.detect_header_row(rows)
        return self.normalize(rows[header_index], rows[header_index + 1:], tenant_label)


def normalize(
    header_row: Sequence[str],
    data_rows: Sequence[Sequence[str]],
    tenant_label: str,
    normalizer: Optional[RowNormalizer] = None
) -> List[NormalizedLead]:
    """Convenience wrapper returning only the surviving leads."""
    return (normalizer or row_normalizer).normalize(header_row, data_rows, tenant_label).leads


# Singleton instance
row_normalizer = RowNormalizer()
