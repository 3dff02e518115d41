"""
Markdown report writer for deployment check runs

Renders a CheckResultSet as a standalone markdown document: run metadata,
a per-section summary table and the detailed results of every section.
"""

from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Mapping, Optional, Union

from models.check_result import CheckResultSet, CheckStatus

STATUS_BADGES = {
    CheckStatus.PASS: "🟢",
    CheckStatus.WARNING: "🟡",
    CheckStatus.SKIP: "⚪",
    CheckStatus.FAIL: "🔴",
    CheckStatus.ERROR: "🔴",
}


def _anchor(title: str) -> str:
    """GitHub-style heading anchor"""
    kept = ''.join(c for c in title.lower() if c.isalnum() or c in ' -')
    return kept.strip().replace(' ', '-')


def render_markdown_report(result_set: CheckResultSet, title: str,
                           context: Optional[Mapping[str, str]] = None) -> str:
    """Build the markdown document for one run"""
    summary = result_set.get_summary()
    overall = result_set.get_overall_status()

    md = []
    md.append(f"# {title}\n\n")
    md.append(f"**Generated**: {datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M:%S UTC')}\n\n")

    if context:
        md.append("## Deployment Information\n\n")
        for key, value in context.items():
            md.append(f"- **{key}**: {value}\n")
        md.append("\n")

    md.append("## Summary\n\n")
    md.append(f"**Overall**: {STATUS_BADGES[overall]} {overall.value}\n\n")
    md.append(f"- Passed: {summary['passed']}\n")
    md.append(f"- Warnings: {summary['warnings']}\n")
    md.append(f"- Errors: {summary['errors']}\n")
    md.append(f"- Failed: {summary['failed']}\n")
    md.append(f"- Skipped: {summary['skipped']}\n\n")

    md.append("| Section | Status | Checks |\n")
    md.append("|---------|--------|--------|\n")
    for category, info in summary['categories'].items():
        status = CheckStatus(info['status'])
        md.append(f"| [{category}](#{_anchor(category)}) | {STATUS_BADGES[status]} {status.value} "
                  f"| {info['count']} |\n")
    md.append("\n---\n\n")

    for category in result_set.get_categories():
        md.append(f"## {category}\n\n")
        for result in result_set.get_by_category(category):
            md.append(f"- {STATUS_BADGES[result.status]} **{result.status.value}** {result.description}\n")
            if result.details:
                for line in result.details.splitlines():
                    md.append(f"  - {line}\n")
        md.append("\n")

    return ''.join(md)


def write_markdown_report(result_set: CheckResultSet, path: Union[str, Path], title: str,
                          context: Optional[Dict[str, str]] = None) -> Path:
    """Write the markdown report to a file and return its path"""
    path = Path(path)
    if path.parent and not path.parent.exists():
        path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(render_markdown_report(result_set, title, context))
    return path
