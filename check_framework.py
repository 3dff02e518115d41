#!/usr/bin/env python3
"""
Check Framework for Deployment Validation

Provides the base class the pre-deploy, post-deploy and add-on tools build on.
Each tool is a sequence of sections; every check inside a section records a
result and prints it as it goes. A hard failure stops the run immediately.
"""

import re
from typing import Optional

from lib.console import Colors, print_status, print_detail
from models.check_result import CheckResult, CheckResultSet, CheckStatus


class HardFailure(Exception):
    """Raised when a check fails hard and the run must stop"""

    def __init__(self, result: CheckResult):
        self.result = result
        super().__init__(f"{result.description}: {result.details}" if result.details else result.description)


class CheckSuite:
    """Base class for a sequential deployment check run"""

    title = "Deployment Checks"

    def __init__(self, name: str):
        self.name = name
        self.results = CheckResultSet(name=name)
        self._category = "general"

    def run(self):
        """Execute all checks. Subclasses call add_* / fail for each result."""
        raise NotImplementedError("Subclasses must implement run()")

    def execute(self) -> int:
        """
        Run the suite and translate the outcome into a process exit code.

        Returns:
            0 when no hard failure occurred (warnings allowed), 1 otherwise
        """
        Colors.header(self.title)
        try:
            self.run()
        except HardFailure as e:
            print()
            Colors.error(f"ERROR: {e}")
            self.print_summary()
            return 1

        self.print_summary()
        return 0

    def section(self, title: str):
        """Start a new section; subsequent results are filed under it"""
        self._category = title
        print()
        Colors.info(title)

    def _record(self, status: CheckStatus, description: str, details: Optional[str],
                metadata: dict) -> CheckResult:
        result = CheckResult(
            check_id=f"{self.name}.{_slug(self._category)}",
            category=self._category,
            description=description,
            status=status,
            details=details,
            metadata=metadata
        )
        self.results.add_result(result)
        print_status(status.value, description)
        if details:
            for line in details.splitlines():
                print_detail(line)
        return result

    def add_pass(self, description: str, details: Optional[str] = None, **metadata) -> CheckResult:
        """Add a passing check result"""
        return self._record(CheckStatus.PASS, description, details, metadata)

    def add_warning(self, description: str, details: Optional[str] = None, **metadata) -> CheckResult:
        """Add a soft failure; execution continues"""
        return self._record(CheckStatus.WARNING, description, details, metadata)

    def add_error(self, description: str, details: Optional[str] = None, **metadata) -> CheckResult:
        """Add a non-fatal error for an independent unit of work"""
        return self._record(CheckStatus.ERROR, description, details, metadata)

    def add_skip(self, description: str, reason: str, **metadata) -> CheckResult:
        """Add a skipped check result"""
        return self._record(CheckStatus.SKIP, description, f"Skipped: {reason}", metadata)

    def fail(self, description: str, details: Optional[str] = None, **metadata):
        """Record a hard failure and stop the run"""
        result = self._record(CheckStatus.FAIL, description, details, metadata)
        raise HardFailure(result)

    def print_summary(self):
        summary = self.results.get_summary()
        print()
        print('=' * 80)
        if summary['failed']:
            Colors.error(f"✗ {self.title} failed")
        elif summary['warnings'] or summary['errors']:
            Colors.warning(f"⚠ {self.title} completed with warnings")
        else:
            Colors.success(f"✅ {self.title} complete")
        print('=' * 80)
        print(f"  Passed:   {summary['passed']}")
        print(f"  Warnings: {summary['warnings']}")
        if summary['errors']:
            print(f"  Errors:   {summary['errors']}")
        if summary['failed']:
            print(f"  Failed:   {summary['failed']}")
        print(f"  Skipped:  {summary['skipped']}")


def _slug(text: str) -> str:
    return re.sub(r'[^a-z0-9]+', '_', text.lower()).strip('_')
