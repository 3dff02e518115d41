"""
Security scanners and cost estimation for the full pipeline

tfsec and checkov run in parallel, each writing its own JSON report under the
reports directory. Findings are counted from the reports; the scans never
block a deployment on their own.
"""

import json
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

from lib.commands import EXIT_NOT_FOUND, CommandResult, CommandRunner


@dataclass
class ScanResult:
    """Outcome of one scanner"""
    scanner: str
    report_file: Path
    returncode: int
    findings: Optional[int] = None
    error: Optional[str] = None

    @property
    def ran(self) -> bool:
        return self.error is None

    @property
    def clean(self) -> bool:
        return self.ran and self.findings == 0


def count_tfsec_findings(report: Dict[str, Any]) -> int:
    return len(report.get('results') or [])


def count_checkov_findings(report: Union[Dict[str, Any], List[Any]]) -> int:
    """checkov emits one object per framework, or a list of them"""
    reports = report if isinstance(report, list) else [report]
    return sum(r.get('summary', {}).get('failed', 0) for r in reports if isinstance(r, dict))


def run_tfsec(runner: CommandRunner, source_dir: Path, reports_dir: Path) -> ScanResult:
    report_file = reports_dir / 'tfsec-report.json'
    _remove_stale(report_file)
    result = runner.run(['tfsec', str(source_dir), '--format', 'json',
                         '--out', str(report_file), '--soft-fail'])
    return _scan_result('tfsec', result, report_file, count_tfsec_findings)


def run_checkov(runner: CommandRunner, source_dir: Path, reports_dir: Path) -> ScanResult:
    report_file = reports_dir / 'checkov-report.json'
    _remove_stale(report_file)
    result = runner.run(['checkov', '-d', str(source_dir), '--framework', 'terraform',
                         '--output', 'json', '--compact', '--quiet'])
    # checkov exits 1 when checks fail, its report goes to stdout
    if result.stdout.strip():
        report_file.write_text(result.stdout)
    return _scan_result('checkov', result, report_file, count_checkov_findings)


def _remove_stale(report_file: Path):
    """A report left by an earlier run must never pass for this one"""
    if report_file.exists():
        report_file.unlink()


def _scan_result(name: str, result: CommandResult, report_file: Path,
                 counter: Callable[[Any], int]) -> ScanResult:
    if result.returncode == EXIT_NOT_FOUND:
        return ScanResult(name, report_file, result.returncode, error=f"{name} is not installed")
    if result.returncode not in (0, 1):
        detail = result.stderr.strip()
        error = f"exit code {result.returncode}: {detail}" if detail else f"exit code {result.returncode}"
        return ScanResult(name, report_file, result.returncode, error=error)
    if not report_file.exists():
        detail = result.stderr.strip() or f"exit code {result.returncode}"
        return ScanResult(name, report_file, result.returncode, error=f"no report produced ({detail})")
    try:
        report = json.loads(report_file.read_text())
    except json.JSONDecodeError as e:
        return ScanResult(name, report_file, result.returncode, error=f"unreadable report: {e}")
    return ScanResult(name, report_file, result.returncode, findings=counter(report))


SCANNERS = {
    'tfsec': run_tfsec,
    'checkov': run_checkov,
}


def run_security_scans(runner: CommandRunner, source_dir: Union[str, Path],
                       reports_dir: Union[str, Path]) -> List[ScanResult]:
    """Run every scanner in parallel; results come back in SCANNERS order"""
    source_dir = Path(source_dir)
    reports_dir = Path(reports_dir)
    reports_dir.mkdir(parents=True, exist_ok=True)

    results: Dict[str, ScanResult] = {}
    with ThreadPoolExecutor(max_workers=len(SCANNERS)) as executor:
        futures = {
            executor.submit(scan, runner, source_dir, reports_dir): name
            for name, scan in SCANNERS.items()
        }
        for future in as_completed(futures):
            results[futures[future]] = future.result()
    return [results[name] for name in SCANNERS]


@dataclass
class CostEstimate:
    report_file: Path
    monthly_cost: Optional[str] = None
    currency: str = "USD"
    error: Optional[str] = None


def estimate_cost(runner: CommandRunner, source_dir: Union[str, Path],
                  reports_dir: Union[str, Path]) -> CostEstimate:
    """`infracost breakdown` for the Terraform directory"""
    reports_dir = Path(reports_dir)
    reports_dir.mkdir(parents=True, exist_ok=True)
    report_file = reports_dir / 'infracost.json'
    _remove_stale(report_file)

    result = runner.run(['infracost', 'breakdown', '--path', str(source_dir),
                         '--format', 'json', '--out-file', str(report_file)])
    if result.returncode == EXIT_NOT_FOUND:
        return CostEstimate(report_file, error="infracost is not installed")
    if not result.ok or not report_file.exists():
        return CostEstimate(report_file, error=result.stderr.strip() or f"exit code {result.returncode}")
    try:
        report = json.loads(report_file.read_text())
    except json.JSONDecodeError as e:
        return CostEstimate(report_file, error=f"unreadable report: {e}")
    return CostEstimate(report_file,
                        monthly_cost=report.get('totalMonthlyCost'),
                        currency=report.get('currency', 'USD'))
