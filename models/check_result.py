"""Check result models"""

from dataclasses import dataclass, field
from typing import Dict, Any, List, Optional
from enum import Enum


class CheckStatus(Enum):
    """Check result status

    FAIL is a hard failure and stops the run. WARNING and ERROR are reported
    and execution continues.
    """
    PASS = "PASS"
    WARNING = "WARNING"
    FAIL = "FAIL"
    ERROR = "ERROR"
    SKIP = "SKIP"


# Worst first, used to roll a category up to a single status
_SEVERITY_ORDER = [CheckStatus.ERROR, CheckStatus.FAIL, CheckStatus.WARNING, CheckStatus.PASS]


@dataclass
class CheckResult:
    """
    Represents the result of a single deployment check.
    """
    check_id: str  # Unique identifier (e.g., "pre_deploy.credentials")
    category: str  # Section the check ran in (e.g., "AWS credentials")
    description: str  # Human-readable description
    status: CheckStatus
    details: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_hard_failure(self) -> bool:
        return self.status == CheckStatus.FAIL


@dataclass
class CheckResultSet:
    """
    Ordered collection of check results for one tool run.
    """
    name: str
    results: List[CheckResult] = field(default_factory=list)

    def add_result(self, result: CheckResult):
        """Add a check result"""
        self.results.append(result)

    def get_by_category(self, category: str) -> List[CheckResult]:
        """Get all results for a specific category"""
        return [r for r in self.results if r.category == category]

    def get_categories(self) -> List[str]:
        """Get categories in the order they first ran"""
        return list(dict.fromkeys(r.category for r in self.results))

    def get_category_status(self, category: str) -> CheckStatus:
        """Get overall status for a category"""
        cat_results = self.get_by_category(category)
        if not cat_results:
            return CheckStatus.SKIP

        for status in _SEVERITY_ORDER:
            if any(r.status == status for r in cat_results):
                return status

        return CheckStatus.SKIP

    def get_overall_status(self) -> CheckStatus:
        if not self.results:
            return CheckStatus.SKIP
        for status in _SEVERITY_ORDER:
            if any(r.status == status for r in self.results):
                return status
        return CheckStatus.SKIP

    def has_hard_failure(self) -> bool:
        return any(r.is_hard_failure for r in self.results)

    def count(self, status: CheckStatus) -> int:
        return sum(1 for r in self.results if r.status == status)

    def get_summary(self) -> Dict[str, Any]:
        """Get summary statistics"""
        return {
            'name': self.name,
            'total': len(self.results),
            'passed': self.count(CheckStatus.PASS),
            'warnings': self.count(CheckStatus.WARNING),
            'failed': self.count(CheckStatus.FAIL),
            'errors': self.count(CheckStatus.ERROR),
            'skipped': self.count(CheckStatus.SKIP),
            'categories': {
                cat: {
                    'status': self.get_category_status(cat).value,
                    'count': len(self.get_by_category(cat))
                }
                for cat in self.get_categories()
            }
        }
