#!/usr/bin/env python3
"""
Stale Pull Request Auto-Merger

Merges open pull requests of watched issues once they have been quiet for
longer than a configurable timeout, provided they have enough reviewer
approvals and a green CI.

Issues enter the watch list when they are assigned and leave it when they are
unassigned (with no assignees left), closed, or when a pull request was
merged on their behalf. A periodic sweep re-evaluates every watched
repository, and the cron workflow is enabled only while the watch list has
entries.

Linked pull requests are discovered by scanning all open, non-draft pull
requests of the watched issue's repository.
"""

import argparse
import json
import logging
import os
import re
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

import yaml
from github import GithubException

from github_gateway import (
    ConfigurationError,
    IssueParams,
    RateLimiter,
    apply_github_env_overrides,
    authenticate_repository,
    build_rate_limiter,
    first_valid_timestamp,
    get_pull_request_details,
    get_timeline_events,
    github_error_message,
    list_check_runs_for_suite,
    list_check_suites,
    list_open_pull_requests,
    list_reviews,
    merge_pull_request,
    parse_github_url,
    set_workflow_enabled,
    validate_github_config,
)
from summary import render_pull_request_summary, write_github_summary
from watch_list import (
    DEFAULT_DATABASE_PATH,
    add_issue,
    get_all_repositories,
    has_data,
    init_database,
    prune_empty_entries,
    remove_issue_by_number,
)


logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


DEFAULT_COLLABORATOR_MERGE_TIMEOUT = "3.5 days"
DEFAULT_COLLABORATOR_APPROVALS = 1
DEFAULT_CONTRIBUTOR_APPROVALS = 2
DEFAULT_REVIEWER_ROLES = ("COLLABORATOR", "MEMBER", "OWNER")

# Author associations that use the collaborator timeout and approval count
COLLABORATOR_ASSOCIATIONS = ("COLLABORATOR", "MEMBER", "OWNER")

DEFAULT_CI_MAX_ATTEMPTS = 100
DEFAULT_CI_DELAY_SECONDS = 60
DEFAULT_CRON_WORKFLOW = "cron.yml"

EXCLUDED_REPO_PATTERN = re.compile(r'^[a-zA-Z0-9._-]+/[a-zA-Z0-9._-]+$')

# Timeline fields holding an event time, most specific first
TIMELINE_TIMESTAMP_FIELDS = ('created_at', 'updated_at', 'timestamp', 'commented_at', 'submitted_at')

EVENT_ASSIGNED = 'issues.assigned'
EVENT_UNASSIGNED = 'issues.unassigned'
EVENT_CLOSED = 'issues.closed'
EVENT_EDITED = 'issues.edited'
SUPPORTED_EVENTS = (
    EVENT_ASSIGNED,
    EVENT_UNASSIGNED,
    EVENT_CLOSED,
    EVENT_EDITED,
    'issues.reopened',
)

_DURATION_PATTERN = re.compile(
    r'^(?P<value>-?(?:\d+)?\.?\d+) *'
    r'(?P<unit>milliseconds?|msecs?|ms|seconds?|secs?|s|minutes?|mins?|m|'
    r'hours?|hrs?|h|days?|d|weeks?|w|years?|yrs?|y)?$',
    re.IGNORECASE,
)
_UNIT_MILLISECONDS = {
    'y': 365.25 * 24 * 60 * 60 * 1000,
    'w': 7 * 24 * 60 * 60 * 1000,
    'd': 24 * 60 * 60 * 1000,
    'h': 60 * 60 * 1000,
    'm': 60 * 1000,
    's': 1000,
    'ms': 1,
}


def parse_duration(value) -> Optional[timedelta]:
    """
    Parse a human duration such as "3.5 days", "12h" or "90 minutes".

    Bare numbers are milliseconds. Returns None for anything unparseable.
    """
    if not isinstance(value, str) or not value.strip() or len(value) > 100:
        return None
    match = _DURATION_PATTERN.match(value.strip())
    if not match:
        return None

    unit = (match.group('unit') or 'ms').lower()
    if unit.startswith(('ms', 'msec', 'millisecond')):
        key = 'ms'
    else:
        key = unit[0]
    return timedelta(milliseconds=float(match.group('value')) * _UNIT_MILLISECONDS[key])


@dataclass
class PluginSettings:
    """Review and timeout policy, in one stable shape with defaults."""
    merge_timeout_collaborator: Optional[str] = DEFAULT_COLLABORATOR_MERGE_TIMEOUT
    merge_timeout_contributor: Optional[str] = None
    approvals_collaborator: int = DEFAULT_COLLABORATOR_APPROVALS
    approvals_contributor: int = DEFAULT_CONTRIBUTOR_APPROVALS
    allowed_reviewer_roles: List[str] = field(default_factory=lambda: list(DEFAULT_REVIEWER_ROLES))
    excluded_repos: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, raw: Optional[dict]) -> 'PluginSettings':
        """
        Build settings from the 'plugin' configuration section.

        Raises:
            ConfigurationError: If approval counts are not positive integers or
                an excluded repository is not in "owner/repo" format
        """
        raw = raw or {}
        merge_timeout = raw.get('mergeTimeout') or {}
        approvals = raw.get('approvalsRequired') or {}

        settings = cls(
            merge_timeout_collaborator=merge_timeout.get('collaborator', DEFAULT_COLLABORATOR_MERGE_TIMEOUT),
            merge_timeout_contributor=merge_timeout.get('contributor'),
            approvals_collaborator=approvals.get('collaborator', DEFAULT_COLLABORATOR_APPROVALS),
            approvals_contributor=approvals.get('contributor', DEFAULT_CONTRIBUTOR_APPROVALS),
            allowed_reviewer_roles=[
                str(role).upper() for role in raw.get('allowedReviewerRoles', DEFAULT_REVIEWER_ROLES)
            ],
            excluded_repos=list(raw.get('excludedRepos') or []),
        )

        for name in ('approvals_collaborator', 'approvals_contributor'):
            count = getattr(settings, name)
            if isinstance(count, bool) or not isinstance(count, int) or count < 1:
                raise ConfigurationError(f"{name} must be a positive integer, got {count!r}")
        for repo in settings.excluded_repos:
            if not isinstance(repo, str) or not EXCLUDED_REPO_PATTERN.match(repo):
                raise ConfigurationError(f"Excluded repository must be in 'owner/repo' format: {repo!r}")
        return settings

    def is_excluded(self, owner: str, repo: str) -> bool:
        return f"{owner}/{repo}" in self.excluded_repos


@dataclass
class Requirements:
    merge_timeout: Optional[str]
    required_approval_count: int


@dataclass
class ResultInfo:
    url: str
    merged: bool


@dataclass
class IssueEvent:
    """An issue webhook event, or a synthetic re-check from the cron sweep."""
    name: str
    owner: str
    repo: str
    issue_number: int
    issue_url: str
    assignees: List[str] = field(default_factory=list)

    @classmethod
    def from_payload(cls, name: str, payload: dict) -> 'IssueEvent':
        """
        Build an event from a GitHub webhook payload.

        Raises:
            KeyError: If the payload lacks the issue or repository
        """
        issue = payload['issue']
        repository = payload['repository']
        return cls(
            name=name,
            owner=repository['owner']['login'],
            repo=repository['name'],
            issue_number=int(issue['number']),
            issue_url=issue['html_url'],
            assignees=[a.get('login') for a in issue.get('assignees') or []],
        )


@dataclass
class MergeContext:
    """Everything one evaluation run needs; clock and sleep are injectable."""
    gh: object
    db_path: str
    settings: PluginSettings
    workflow_name: Optional[str] = None
    ci_max_attempts: int = DEFAULT_CI_MAX_ATTEMPTS
    ci_delay_seconds: float = DEFAULT_CI_DELAY_SECONDS
    sleep: Callable[[float], None] = time.sleep
    clock: Callable[[], datetime] = field(default=lambda: datetime.now(timezone.utc))
    summary_path: Optional[str] = None


# =============================================================================
# Policy helpers
# =============================================================================


def get_requirements(settings: PluginSettings, author_association: Optional[str]) -> Optional[Requirements]:
    """
    Select the timeout and approval count for a pull request author.

    Collaborators, members and owners use the collaborator tier. Everyone
    else uses the contributor tier when a contributor timeout is configured,
    otherwise no timeout policy applies (None).
    """
    if (author_association or '').upper() in COLLABORATOR_ASSOCIATIONS:
        return Requirements(
            merge_timeout=settings.merge_timeout_collaborator,
            required_approval_count=settings.approvals_collaborator,
        )
    if settings.merge_timeout_contributor:
        return Requirements(
            merge_timeout=settings.merge_timeout_contributor,
            required_approval_count=settings.approvals_contributor,
        )
    return None


def extract_event_timestamp(event: dict) -> Optional[datetime]:
    """Most specific timestamp of a raw timeline event, or None."""
    return first_valid_timestamp(event.get(name) for name in TIMELINE_TIMESTAMP_FIELDS)


def compute_last_activity_date(events: List[dict], pull_request) -> Optional[datetime]:
    """
    Latest activity on a pull request.

    The maximum timestamp over all timeline events; when the timeline has no
    usable timestamps, the pull request's updated_at or created_at.
    """
    dates = [date for date in (extract_event_timestamp(event) for event in events) if date is not None]
    if dates:
        return max(dates)
    return first_valid_timestamp([
        getattr(pull_request, 'updated_at', None),
        getattr(pull_request, 'created_at', None),
    ])


def is_past_timeout(last_activity: datetime, timeout: timedelta, now: datetime) -> bool:
    return now > last_activity + timeout


def author_association(pull_request) -> str:
    raw = getattr(pull_request, 'raw_data', None) or {}
    return raw.get('author_association') or 'NONE'


# =============================================================================
# Gates
# =============================================================================


def get_approval_count(ctx: MergeContext, params: IssueParams) -> int:
    """Count APPROVED reviews from authors in the allowed reviewer roles."""
    try:
        reviews = list_reviews(ctx.gh, params)
    except GithubException as e:
        logger.error(f"[PR Auto-Merge] Error fetching reviews' approvals: {github_error_message(e)}")
        return 0
    return len([
        review for review in reviews
        if (review.get('author_association') or '').upper() in ctx.settings.allowed_reviewer_roles
        and review.get('state') == 'APPROVED'
    ])


def _evaluate_check_suites(ctx: MergeContext, suites: list) -> Optional[bool]:
    """
    One pass over the check runs of every suite.

    Returns:
        None if a run is still in progress, False if a run failed, True otherwise
    """
    for suite in suites:
        logger.debug(f"Checking runs for suite {suite.id}, and filter out {ctx.workflow_name}")
        runs = [run for run in list_check_runs_for_suite(suite) if run['name'] != ctx.workflow_name]
        if any(run['status'] != 'completed' for run in runs):
            return None
        for run in runs:
            logger.debug(f"Workflow {run['name']}/{run['id']} [{run['url']}]: {run['status']},{run['conclusion']}")
        if any(run['conclusion'] == 'failure' for run in runs):
            return False
    return True


def is_ci_green(ctx: MergeContext, sha: str, params: IssueParams) -> bool:
    """
    Check that every CI run of a commit succeeded.

    Runs named after this workflow are ignored. While runs are still in
    progress the check is repeated, up to ctx.ci_max_attempts times with
    ctx.ci_delay_seconds between attempts; exhausting the attempts counts as
    not green.
    """
    try:
        suites = list_check_suites(ctx.gh, params.owner, params.repo, sha)
        for attempt in range(1, ctx.ci_max_attempts + 1):
            status = _evaluate_check_suites(ctx, suites)
            if status is not None:
                return status
            if attempt < ctx.ci_max_attempts:
                logger.info("Not all CI runs were complete, will retry...")
                ctx.sleep(ctx.ci_delay_seconds)
    except GithubException as e:
        logger.error(f"[PR Auto-Merge] Error checking CI status: {github_error_message(e)}")
        return False

    logger.warning(f"[PR Auto-Merge] CI for {sha} still incomplete after {ctx.ci_max_attempts} attempts")
    return False


# =============================================================================
# Evaluation
# =============================================================================


def list_candidate_pull_requests(ctx: MergeContext, owner: str, repo: str) -> list:
    """Open, non-draft pull requests of a repository; empty for excluded repositories."""
    if ctx.settings.is_excluded(owner, repo):
        logger.info(f"Repository {owner}/{repo} is excluded, skipping whole-repo PR scan.")
        return []
    return [pr for pr in list_open_pull_requests(ctx.gh, owner, repo) if not pr.draft]


def attempt_merging(
    ctx: MergeContext,
    event: IssueEvent,
    params: IssueParams,
    pull_request,
    requirements: Requirements,
    last_activity: datetime,
) -> bool:
    """Merge a timed-out pull request if it has enough approvals and a green CI."""
    html_url = pull_request.html_url
    sha = pull_request.head.sha

    if get_approval_count(ctx, params) < requirements.required_approval_count:
        logger.info(f"Pull-request {html_url} does not have sufficient reviewer approvals to be merged.")
        return False

    if not is_ci_green(ctx, sha, params):
        logger.info(f"Pull-request {html_url} (sha: {sha}) does not pass all CI tests, won't merge.")
        return False

    logger.info(
        f"Pull-request {html_url} is past its due date "
        f"({requirements.merge_timeout} after {last_activity.isoformat()}), will merge."
    )
    merge_pull_request(ctx.gh, params)
    remove_issue_by_number(ctx.db_path, event.owner, event.repo, event.issue_number)
    return True


def evaluate_pull_request(ctx: MergeContext, event: IssueEvent, listed_pull_request) -> Optional[bool]:
    """
    Evaluate one pull request and merge it if all gates pass.

    Returns:
        True if merged, False if left open, None if already merged or closed
    """
    html_url = listed_pull_request.html_url
    params = parse_github_url(html_url)
    logger.debug(f"Processing pull-request {html_url}")

    details = get_pull_request_details(ctx.gh, params)
    if details.merged or details.state == 'closed':
        logger.info(f"The pull request {html_url} is already merged or closed, nothing to do.")
        return None

    events = get_timeline_events(ctx.gh, params)
    last_activity = compute_last_activity_date(events, details)
    association = author_association(details)
    requirements = get_requirements(ctx.settings, association)
    logger.debug(
        f"Requirements according to association {association} with last activity date: "
        f"{last_activity}: {requirements}"
    )

    if last_activity is None:
        logger.info(f"PR {html_url} does not seem to have any activity, nothing to do.")
        return False

    merge_timeout = requirements.merge_timeout if requirements else None
    timeout = parse_duration(merge_timeout)
    if timeout is None:
        logger.warning(
            f"Invalid or missing mergeTimeout ({merge_timeout!r}), "
            f"skipping merge-time check for PR {html_url}."
        )
        return False

    if not is_past_timeout(last_activity, timeout, ctx.clock()):
        logger.info(
            f"PR {html_url} has activity up until ({last_activity.isoformat()}), nothing to do "
            f"(mergeTimeout: {merge_timeout})."
        )
        return False

    return attempt_merging(ctx, event, params, details, requirements, last_activity)


def update_pull_requests(ctx: MergeContext, event: IssueEvent) -> Optional[List[ResultInfo]]:
    """
    Handle an issue event.

    Assignment events only update the watch list and return None. Any other
    supported event evaluates the repository's open pull requests and returns
    one ResultInfo per evaluated pull request. A failure on one pull request
    never stops the others.
    """
    issue_number = event.issue_number

    if event.name == EVENT_ASSIGNED:
        if ctx.settings.is_excluded(event.owner, event.repo):
            logger.info(
                f"Issue {issue_number} is in an excluded repository "
                f"({event.owner}/{event.repo}), skipping watch list registration."
            )
            return None
        add_issue(ctx.db_path, event.issue_url)
        logger.info(f"Issue {issue_number} has been registered in the watch list ({event.issue_url}).")
        return None

    if event.name in (EVENT_UNASSIGNED, EVENT_CLOSED):
        if event.name == EVENT_UNASSIGNED and event.assignees:
            logger.info(f"Issue {issue_number} still has assignees, nothing to do.")
            return None
        remove_issue_by_number(ctx.db_path, event.owner, event.repo, issue_number)
        logger.info(f"Issue {issue_number} has been removed from the watch list ({event.issue_url}).")
        return None

    pull_requests = list_candidate_pull_requests(ctx, event.owner, event.repo)
    if not pull_requests:
        logger.info("No linked pull requests found, nothing to do.")
        return []

    logger.info(
        f"Found {len(pull_requests)} linked pull requests, will process them: "
        f"{', '.join(pr.html_url for pr in pull_requests)}"
    )

    results = []
    for pull_request in pull_requests:
        merged = False
        try:
            outcome = evaluate_pull_request(ctx, event, pull_request)
            if outcome is None:
                continue
            merged = outcome
        except Exception as e:
            logger.error(f"Could not process pull-request {pull_request.html_url} for auto-merge: {e}")
        results.append(ResultInfo(url=pull_request.html_url, merged=merged))

    write_github_summary(render_pull_request_summary(results), path=ctx.summary_path)
    return results


def update_cron_state(gh, db_path: str, cron_repository: Optional[str], workflow_id: str = DEFAULT_CRON_WORKFLOW) -> None:
    """
    Enable the cron workflow while the watch list has entries, disable it otherwise.

    Failures to toggle the workflow are logged; watch list errors propagate.
    """
    prune_empty_entries(db_path)

    if not cron_repository:
        logger.error("Can't update the Action Workflow state as the cron repository is not configured.")
        return

    enabled = has_data(db_path)
    try:
        logger.debug(f"{'Enabling' if enabled else 'Disabling'} {workflow_id} workflow in {cron_repository}.")
        set_workflow_enabled(gh, cron_repository, workflow_id, enabled)
    except GithubException as e:
        logger.error(f"Could not enable / disable the CRON workflow: {github_error_message(e)}")


# =============================================================================
# Entry points
# =============================================================================


def build_context(config: dict, gh, settings: Optional[PluginSettings] = None) -> MergeContext:
    ci_poll = config.get('ci_poll') or {}
    return MergeContext(
        gh=gh,
        db_path=config.get('database_path', DEFAULT_DATABASE_PATH),
        settings=settings or PluginSettings.from_dict(config.get('plugin')),
        workflow_name=config.get('workflow_name') or os.environ.get('WORKFLOW_NAME'),
        ci_max_attempts=int(ci_poll.get('max_attempts', DEFAULT_CI_MAX_ATTEMPTS)),
        ci_delay_seconds=float(ci_poll.get('delay_seconds', DEFAULT_CI_DELAY_SECONDS)),
        summary_path=config.get('summary_file'),
    )


def cron_repository_from(config: dict) -> Optional[str]:
    return config.get('cron_repository') or os.environ.get('GITHUB_REPOSITORY')


def finish_run(config: dict) -> None:
    """Update the cron workflow state using the cron repository's credentials."""
    cron_repository = cron_repository_from(config)
    db_path = config.get('database_path', DEFAULT_DATABASE_PATH)
    if not cron_repository:
        update_cron_state(None, db_path, None)
        return
    owner, repo = cron_repository.split('/', 1)
    try:
        gh = authenticate_repository(config, owner, repo)
    except GithubException as e:
        logger.error(f"Could not authenticate for {cron_repository}: {github_error_message(e)}")
        prune_empty_entries(db_path)
        return
    update_cron_state(gh, db_path, cron_repository, config.get('cron_workflow', DEFAULT_CRON_WORKFLOW))


def handle_issue_event(config: dict, event: IssueEvent, gh=None) -> Optional[List[ResultInfo]]:
    """Process one webhook event and refresh the cron workflow state."""
    db_path = config.get('database_path', DEFAULT_DATABASE_PATH)
    init_database(db_path)
    gh = gh or authenticate_repository(config, event.owner, event.repo)
    results = update_pull_requests(build_context(config, gh), event)
    finish_run(config)
    return results


def run_cron_sweep(config: dict, rate_limiter: Optional[RateLimiter] = None, authenticate=None) -> List[ResultInfo]:
    """
    Re-evaluate every watched repository.

    Each repository is re-checked as an "issues.edited" event for its first
    watched issue. Repositories are processed one at a time through the rate
    limiter, and a failure on one repository does not stop the others.
    """
    db_path = config.get('database_path', DEFAULT_DATABASE_PATH)
    init_database(db_path)
    settings = PluginSettings.from_dict(config.get('plugin'))
    authenticate = authenticate or authenticate_repository
    rate_limiter = rate_limiter or build_rate_limiter(config)

    repositories = get_all_repositories(db_path)
    logger.info(f"Loaded watch list: {len(repositories)} repositories")

    results = []
    for entry in repositories:
        if not entry.issue_numbers:
            continue

        issue_number = entry.issue_numbers[0]
        url = f"https://github.com/{entry.owner}/{entry.repo}/issues/{issue_number}"
        logger.info(
            f"Triggering update for {entry.owner}/{entry.repo} "
            f"(issue #{issue_number}, {len(entry.issue_numbers)} watched)"
        )
        rate_limiter.acquire()
        try:
            gh = authenticate(config, entry.owner, entry.repo)
            event = IssueEvent(
                name=EVENT_EDITED,
                owner=entry.owner,
                repo=entry.repo,
                issue_number=issue_number,
                issue_url=url,
            )
            results.extend(update_pull_requests(build_context(config, gh, settings), event) or [])
        except Exception as e:
            logger.error(f"Failed to process repository updates for {url}: {e}")
        finally:
            rate_limiter.record()

    return results


def validate_config(config: dict) -> None:
    """
    Validate the pull request auto-merge configuration.

    Raises:
        ConfigurationError: If credentials or plugin settings are invalid
    """
    validate_github_config(config)
    PluginSettings.from_dict(config.get('plugin'))
    ci_poll = config.get('ci_poll') or {}
    raw_attempts = ci_poll.get('max_attempts', DEFAULT_CI_MAX_ATTEMPTS)
    raw_delay = ci_poll.get('delay_seconds', DEFAULT_CI_DELAY_SECONDS)
    try:
        attempts = int(raw_attempts)
        delay = float(raw_delay)
    except (TypeError, ValueError):
        raise ConfigurationError(
            f"ci_poll settings must be numeric, got max_attempts={raw_attempts!r} delay_seconds={raw_delay!r}"
        ) from None
    if attempts < 1:
        raise ConfigurationError("ci_poll.max_attempts must be a positive integer")
    if delay < 0:
        raise ConfigurationError("ci_poll.delay_seconds must not be negative")
    build_rate_limiter(config)


def load_config(config_path: str) -> dict:
    """Load configuration from a YAML file, apply environment overrides and validate."""
    config = {}
    if os.path.exists(config_path):
        with open(config_path, 'r', encoding='utf-8') as f:
            config = yaml.safe_load(f) or {}
    config = apply_github_env_overrides(config)
    validate_config(config)
    return config


def _event_name(args, payload: dict) -> str:
    if args.name:
        return args.name
    base = os.environ.get('GITHUB_EVENT_NAME', 'issues')
    action = payload.get('action')
    return f"{base}.{action}" if action else base


def main() -> Optional[int]:
    """Main entry point for the script."""
    parser = argparse.ArgumentParser(
        description='Merge stale pull requests of watched issues once reviews and CI allow it.'
    )
    parser.add_argument(
        '-c', '--config',
        default='config.yaml',
        help='Path to configuration file (default: config.yaml)'
    )
    parser.add_argument(
        '-v', '--verbose',
        action='store_true',
        help='Enable verbose logging'
    )
    subparsers = parser.add_subparsers(dest='command', required=True)

    subparsers.add_parser('cron', help='Re-evaluate every watched repository')

    event_parser = subparsers.add_parser('event', help='Handle one issue webhook event')
    event_parser.add_argument(
        '--name',
        help='Event name such as issues.assigned (default: $GITHUB_EVENT_NAME plus payload action)'
    )
    event_parser.add_argument(
        '--payload',
        default=os.environ.get('GITHUB_EVENT_PATH'),
        help='Path to the JSON event payload (default: $GITHUB_EVENT_PATH)'
    )

    args = parser.parse_args()

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        config = load_config(args.config)
    except yaml.YAMLError as e:
        logger.error(f"Invalid YAML in configuration file: {e}")
        return 1
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return 1

    if args.command == 'cron':
        results = run_cron_sweep(config)
        finish_run(config)
        merged = len([r for r in results if r.merged])
        logger.info(f"Evaluated {len(results)} pull requests, merged {merged}")
        return 0

    if not args.payload:
        logger.error("No event payload given")
        return 1
    try:
        with open(args.payload, 'r', encoding='utf-8') as f:
            payload = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.error(f"Could not read event payload {args.payload}: {e}")
        return 1

    name = _event_name(args, payload)
    if name not in SUPPORTED_EVENTS:
        logger.info(f"Event {name} is not supported, nothing to do.")
        return 0

    handle_issue_event(config, IssueEvent.from_payload(name, payload))
    return 0


if __name__ == '__main__':
    exit(main())
