"""
Markdown reports for auto-merge runs.

Renders branch merge outcomes and pull request results with Jinja2 and
appends them to the GitHub Actions step summary when running inside a
workflow.
"""

import logging
import os
from typing import Optional

from jinja2 import Template

logger = logging.getLogger(__name__)


MERGE_SUMMARY_TEMPLATE = """\
## Auto-Merge Summary

Processed **{{ outcomes | length }}** repositories with **{{ errors }}** errors{% if warnings %} and **{{ warnings }}** warnings{% endif %}.
{% if aborted %}

> **Run aborted by the fork safety guard.**
{% endif %}

| Status | Count |
| --- | --- |
| ✅ Merged | {{ counts['merged'] }} |
| ℹ️ Up-to-date | {{ counts['up-to-date'] }} |
| ⚠️ Conflicts | {{ counts['conflict'] }} |
| ⏭️ Skipped | {{ counts['skipped'] }} |
{% if outcomes %}

### Repository Outcomes

| Org | Repo | Default Branch | Outcome | Details |
| --- | --- | --- | --- | --- |
{% for o in outcomes -%}
| {{ o.org }} | {{ o.repo }} | {{ o.default_branch }} | {{ icons[o.status] }} | {{ details(o) }} |
{% endfor %}
{%- endif %}
{% if errors_detail %}

### Failures

| Severity | Scope | Org | Repo | Stage | Reason | URL |
| --- | --- | --- | --- | --- | --- | --- |
{% for e in errors_detail -%}
| {{ '⚠️ Warning' if e.severity == 'warning' else '❌ Error' }} | {{ e.scope }} | {{ e.org }} | {{ e.repo or '-' }} | {{ e.stage }} | {{ e.reason }} | [link]({{ e.url }}) |
{% endfor %}
{%- endif %}
"""

PULL_REQUEST_SUMMARY_TEMPLATE = """\
## Pull Request Auto-Merge Summary

{% if results -%}
| Pull Request | Merged |
| --- | --- |
{% for r in results -%}
| {{ r.url }} | {{ '🔵' if r.merged else '⚫' }} |
{% endfor %}
{%- else -%}
No pull requests were evaluated.
{% endif %}
"""

STATUS_ICONS = {
    'merged': '✅ merged',
    'up-to-date': 'ℹ️ up-to-date',
    'conflict': '⚠️ conflict',
    'skipped': '⏭️ skipped',
}


def _outcome_details(outcome) -> str:
    if outcome.status == 'merged':
        sha = outcome.sha or ''
        return (
            f"SHA: `{sha[:7]}` - "
            f"[view commit](https://github.com/{outcome.org}/{outcome.repo}/commit/{sha})"
        )
    if outcome.status == 'up-to-date':
        return "Already contained"
    if outcome.status == 'conflict':
        return "Merge conflict detected; PR opened"
    return outcome.reason or ''


def render_merge_summary(outcomes: list, errors: int, errors_detail: Optional[list] = None,
                         warnings: int = 0, aborted: bool = False) -> str:
    """
    Render the branch auto-merge report.

    Args:
        outcomes: MergeOutcome records, one per evaluated repository
        errors: Number of hard errors recorded during the run
        errors_detail: MergeError records (errors and warnings)
        warnings: Number of soft failures recorded during the run
        aborted: Whether the fork safety guard stopped the run

    Returns:
        Markdown report
    """
    counts = {status: 0 for status in STATUS_ICONS}
    for outcome in outcomes:
        counts[outcome.status] = counts.get(outcome.status, 0) + 1

    return Template(MERGE_SUMMARY_TEMPLATE).render(
        outcomes=outcomes,
        errors=errors,
        warnings=warnings,
        aborted=aborted,
        errors_detail=errors_detail or [],
        counts=counts,
        icons=STATUS_ICONS,
        details=_outcome_details,
    )


def render_pull_request_summary(results: list) -> str:
    """Render the pull request auto-merge report from ResultInfo records."""
    return Template(PULL_REQUEST_SUMMARY_TEMPLATE).render(results=results)


def write_github_summary(markdown: str, path: Optional[str] = None) -> bool:
    """
    Append a report to the GitHub Actions step summary.

    Args:
        markdown: Report content
        path: Summary file; defaults to $GITHUB_STEP_SUMMARY

    Returns:
        True if written, False when not running inside GitHub Actions
    """
    path = path or os.environ.get('GITHUB_STEP_SUMMARY')
    if not path:
        logger.debug("GITHUB_STEP_SUMMARY not set, skipping step summary")
        return False

    with open(path, 'a', encoding='utf-8') as f:
        f.write(markdown)
        f.write('\n')
    return True


def log_outcomes(outcomes: list) -> None:
    for o in outcomes:
        if o.status == 'merged':
            logger.info(f"✅ {o.org}/{o.repo}: merged {o.default_branch} into main ({o.sha}).")
        elif o.status == 'up-to-date':
            logger.info(f"ℹ️  {o.org}/{o.repo}: main already contains {o.default_branch}.")
        elif o.status == 'conflict':
            logger.info(f"⚠️  {o.org}/{o.repo}: merge conflict detected.")
        else:
            logger.info(f"⏭️  {o.org}/{o.repo}: {o.reason}.")
