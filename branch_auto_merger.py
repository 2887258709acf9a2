#!/usr/bin/env python3
"""
Inactive Development Branch Auto-Merger

This script folds long-lived development branches into main across one or
more GitHub organizations once they have been inactive for a configurable
number of days.

For every repository of every target organization it:
- Runs the fork safety guard and stops the run if it reports an unsafe fork
- Skips archived repositories and repositories without the default branch
- Makes sure a main branch exists (creating it from the default branch)
- Finds the most recent human commit on the default branch, ignoring bots
- Merges the default branch into main once that commit is older than the
  inactivity threshold, opening a pull request instead on merge conflicts

Each evaluated repository yields one MergeOutcome; failures are recorded as
MergeError entries and do not stop the remaining repositories.
"""

import argparse
import logging
import math
import os
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import List, Optional

import yaml
from github import GithubException

from github_gateway import (
    DEFAULT_DEVELOPMENT_BRANCH,
    ConfigurationError,
    RateLimiter,
    apply_github_env_overrides,
    authenticate_organization,
    build_rate_limiter,
    create_main_branch_from,
    first_valid_timestamp,
    get_branch,
    get_main_branch,
    get_repository,
    github_error_message,
    is_base_missing_error,
    is_bot_name,
    list_branch_commits,
    list_open_pull_requests,
    list_organization_repositories,
    merge_branches,
    open_fallback_pull_request,
    parse_orgs,
    validate_github_config,
)
from summary import log_outcomes, render_merge_summary, write_github_summary


logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


DEFAULT_INACTIVITY_DAYS = 90
SECONDS_PER_DAY = 24 * 60 * 60

# Number of times a merge is retried after creating a missing main branch
MAX_MERGE_RETRIES = 1

# Remote error messages that are expected and reported as warnings
BENIGN_ERROR_MARKERS = (
    "already exists for",
    "no history in common with",
)

FORK_GUARD_SCOPE_RUN = 'run'
FORK_GUARD_SCOPE_ORGANIZATION = 'organization'


@dataclass
class MergeOutcome:
    """Result of evaluating one repository: merged, up-to-date, skipped or conflict."""
    status: str
    org: str
    repo: str
    default_branch: str
    sha: Optional[str] = None
    reason: Optional[str] = None


@dataclass
class MergeError:
    scope: str
    org: str
    url: str
    reason: str
    stage: str
    severity: str = 'error'
    repo: Optional[str] = None


@dataclass
class ForkGuardResult:
    safe: bool
    reason: Optional[str] = None


@dataclass
class RepositoryResult:
    outcome: Optional[MergeOutcome] = None
    error: Optional[MergeError] = None
    aborted: bool = False


@dataclass
class AutoMergeResult:
    outcomes: List[MergeOutcome] = field(default_factory=list)
    errors: int = 0
    warnings: int = 0
    errors_detail: List[MergeError] = field(default_factory=list)
    aborted: bool = False

    def record_error(self, error: MergeError) -> None:
        self.errors_detail.append(error)
        if error.severity == 'warning':
            self.warnings += 1
        else:
            self.errors += 1

    def extend(self, other: 'AutoMergeResult') -> None:
        self.outcomes.extend(other.outcomes)
        self.errors += other.errors
        self.warnings += other.warnings
        self.errors_detail.extend(other.errors_detail)
        self.aborted = self.aborted or other.aborted


@dataclass
class ProcessingContext:
    gh: object
    org: str
    cutoff_time: datetime
    inactivity_days: int
    now: datetime
    dry_run: bool = False


def classify_error_severity(reason: str) -> str:
    """Known benign remote errors are warnings; everything else is an error."""
    lowered = reason.lower()
    if any(marker in lowered for marker in BENIGN_ERROR_MARKERS):
        return 'warning'
    return 'error'


# =============================================================================
# Fork Safety Guard
# =============================================================================


def fork_safety_guard(gh, owner: str, repo: str) -> ForkGuardResult:
    """
    Check that a repository is not a fork with an open PR back to its parent.

    Prevents a test deployment running inside a fork from merging branches
    that would flow into a real upstream pull request. Any ambiguity or
    failure is reported as unsafe.

    Args:
        gh: Authenticated GitHub client
        owner: Repository owner
        repo: Repository name

    Returns:
        ForkGuardResult(safe=True) or ForkGuardResult(safe=False, reason=...)
    """
    try:
        repository = get_repository(gh, owner, repo)

        if not repository.fork:
            logger.debug(f"[Fork Guard] {owner}/{repo} is not a fork")
            return ForkGuardResult(safe=True)

        parent = getattr(repository.parent, 'full_name', None) if repository.parent else None
        if not parent:
            logger.warning("[Fork Guard] Fork detected but parent unknown")
            return ForkGuardResult(safe=False, reason="fork detected with unknown parent")

        up_owner, up_repo = parent.split('/', 1)
        pulls = list_open_pull_requests(gh, up_owner, up_repo, head=f"{owner}:main")
        if pulls:
            logger.warning(f"[Fork Guard] Found open PR from {owner}:main to {parent}")
            return ForkGuardResult(safe=False, reason=f"open PR from {owner}:main to {parent}")

        logger.debug("[Fork Guard] No open PRs found, safe to proceed")
        return ForkGuardResult(safe=True)

    except Exception as e:
        logger.error(f"[Fork Guard] Check failed: {e}")
        return ForkGuardResult(safe=False, reason="fork guard check failed")


# =============================================================================
# Inactivity checks
# =============================================================================


def find_most_recent_human_commit_date(ctx: ProcessingContext, repo_name: str, branch) -> Optional[datetime]:
    """
    Find the date of the most recent human commit on a branch.

    Uses the tip directly when it is not bot-authored. Otherwise walks the
    history newest-first and stops at the first commit whose author and
    committer are both human. Falls back to the tip's date when the whole
    history is bot-authored.

    Args:
        ctx: Processing context
        repo_name: Repository name
        branch: BranchSnapshot of the tip

    Returns:
        Date of the commit, or None if no usable date exists
    """
    tip_date = first_valid_timestamp([branch.committer_date, branch.author_date])

    if not is_bot_name(branch.author_name) and not is_bot_name(branch.committer_name):
        return tip_date

    logger.debug(
        f"[Auto-Merge] Tip of {ctx.org}/{repo_name}:{branch.name} is bot-authored, "
        f"searching history for a human commit"
    )
    for commit in list_branch_commits(ctx.gh, ctx.org, repo_name, branch.name):
        if commit.automated or is_bot_name(commit.author_name) or is_bot_name(commit.committer_name):
            continue
        if commit.date is not None:
            logger.debug(f"[Auto-Merge] Most recent human commit {commit.sha} by {commit.author_name}")
            return commit.date

    logger.debug(f"[Auto-Merge] No human commits in {ctx.org}/{repo_name}, using branch tip date")
    return tip_date


def check_branch_inactivity(ctx: ProcessingContext, repo_name: str, branch) -> dict:
    """
    Decide whether a branch has been inactive long enough to merge.

    Returns:
        Dict with 'skip' (bool), 'reason' (when skipped) and
        'days_since_last_commit'
    """
    try:
        most_recent = find_most_recent_human_commit_date(ctx, repo_name, branch)
    except Exception as e:
        logger.error(
            f"[Auto-Merge] Failed to check branch inactivity for {ctx.org}/{repo_name}: "
            f"{github_error_message(e)}"
        )
        return {'skip': True, 'reason': "Failed to check branch inactivity", 'days_since_last_commit': 0}

    if most_recent is None:
        logger.info(f"[Auto-Merge] Skipping {ctx.org}/{repo_name}: Unable to determine last commit date")
        return {'skip': True, 'reason': "Unable to determine last commit date", 'days_since_last_commit': 0}

    days_since_last_commit = math.floor((ctx.now - most_recent).total_seconds() / SECONDS_PER_DAY)

    if most_recent > ctx.cutoff_time:
        logger.info(
            f"[Auto-Merge] Skipping {ctx.org}/{repo_name}: Development branch is still active "
            f"(last commit {days_since_last_commit} days ago, threshold {ctx.inactivity_days} days)"
        )
        return {
            'skip': True,
            'reason': "Development branch is still active",
            'days_since_last_commit': days_since_last_commit,
        }

    return {'skip': False, 'days_since_last_commit': days_since_last_commit}


# =============================================================================
# Merging
# =============================================================================


def handle_merge_result(ctx: ProcessingContext, result, repo_name: str, default_branch: str) -> RepositoryResult:
    """Map a merge API status to a MergeOutcome, opening a PR on conflicts."""
    full_name = f"{ctx.org}/{repo_name}"
    outcome = MergeOutcome(status='up-to-date', org=ctx.org, repo=repo_name, default_branch=default_branch)

    if result.status == 201:
        logger.info(f"[Auto-Merge] ✓ Merged {full_name} (SHA: {result.sha})")
        outcome.status = 'merged'
        outcome.sha = result.sha or 'unknown'
    elif result.status == 204:
        logger.info(f"[Auto-Merge] ✓ {full_name} already up-to-date")
    elif result.status == 409:
        logger.warning(f"[Auto-Merge] ✗ Merge conflict in {full_name}")
        outcome.status = 'conflict'
        try:
            open_fallback_pull_request(ctx.gh, ctx.org, repo_name, head=default_branch)
        except GithubException as e:
            logger.warning(
                f"[Auto-Merge] Could not open pull request for {full_name}: {github_error_message(e)}"
            )
    else:
        outcome.status = 'skipped'
        outcome.reason = f"Unexpected status: {result.status}"

    return RepositoryResult(outcome=outcome)


def attempt_merge(
    ctx: ProcessingContext,
    repo_name: str,
    default_branch: str,
    days_since_last_commit: int,
    attempt: int = 0,
) -> RepositoryResult:
    """
    Merge the default branch into main.

    A missing main branch is created from the default branch and the merge is
    retried, at most MAX_MERGE_RETRIES times.
    """
    full_name = f"{ctx.org}/{repo_name}"
    logger.info(f"[Auto-Merge] Merging {full_name} (inactive for {days_since_last_commit} days)")

    if ctx.dry_run:
        logger.info(f"[DRY RUN] Would merge {default_branch} into main for {full_name}")
        return RepositoryResult(outcome=MergeOutcome(
            status='skipped', org=ctx.org, repo=repo_name, default_branch=default_branch,
            reason="Dry run: would merge",
        ))

    message = (
        f"Automated merge from {default_branch} to main after "
        f"{ctx.inactivity_days} days of inactivity"
    )
    try:
        result = merge_branches(ctx.gh, ctx.org, repo_name, head=default_branch, message=message)
    except GithubException as e:
        if is_base_missing_error(e) and attempt < MAX_MERGE_RETRIES:
            logger.warning(f"[Auto-Merge] main branch does not exist in {full_name}, creating it")
            try:
                create_main_branch_from(ctx.gh, ctx.org, repo_name, default_branch)
            except GithubException as create_error:
                return RepositoryResult(error=_merge_error(ctx, repo_name, create_error))
            logger.info(f"[Auto-Merge] Created main branch for {full_name}, retrying merge...")
            return attempt_merge(ctx, repo_name, default_branch, days_since_last_commit, attempt + 1)

        logger.error(f"[Auto-Merge] Merge failed for {full_name}: {github_error_message(e)}")
        return RepositoryResult(error=_merge_error(ctx, repo_name, e))

    return handle_merge_result(ctx, result, repo_name, default_branch)


def _merge_error(ctx: ProcessingContext, repo_name: str, error: Exception, stage: str = 'merge') -> MergeError:
    reason = github_error_message(error)
    return MergeError(
        scope='repo',
        org=ctx.org,
        repo=repo_name,
        url=f"https://github.com/{ctx.org}/{repo_name}",
        reason=reason,
        stage=stage,
        severity=classify_error_severity(reason),
    )


# =============================================================================
# Repository and organization processing
# =============================================================================


def process_repository(ctx: ProcessingContext, repo) -> RepositoryResult:
    """
    Check a repository's eligibility and merge its default branch if inactive.

    Args:
        ctx: Processing context
        repo: PyGithub Repository from the organization listing

    Returns:
        RepositoryResult; aborted=True when the fork guard fired
    """
    repo_name = repo.name
    full_name = f"{ctx.org}/{repo_name}"
    default_branch = repo.default_branch or DEFAULT_DEVELOPMENT_BRANCH

    logger.info(f"[Auto-Merge] Checking {full_name}")

    def skipped(reason: str) -> RepositoryResult:
        return RepositoryResult(outcome=MergeOutcome(
            status='skipped', org=ctx.org, repo=repo_name, default_branch=default_branch, reason=reason,
        ))

    owner = getattr(repo.owner, 'login', None) or ctx.org
    guard = fork_safety_guard(ctx.gh, owner, repo_name)
    if not guard.safe:
        logger.warning(f"[Auto-Merge] Aborted: {guard.reason}")
        return RepositoryResult(aborted=True)

    if repo.archived:
        logger.info(f"[Auto-Merge] Skipping {full_name}: archived")
        return skipped("Repository archived")

    branch = get_branch(ctx.gh, ctx.org, repo_name, default_branch)
    if branch is None:
        logger.info(f"[Auto-Merge] Skipping {full_name}: no {default_branch} branch")
        return skipped(f"{default_branch} branch missing")

    main_branch = get_main_branch(ctx.gh, ctx.org, repo_name)
    if main_branch is None and not ctx.dry_run:
        try:
            create_main_branch_from(ctx.gh, ctx.org, repo_name, default_branch)
            main_branch = get_main_branch(ctx.gh, ctx.org, repo_name)
        except GithubException as e:
            logger.warning(f"[Auto-Merge] Failed to create main branch for {full_name}: {github_error_message(e)}")
            main_branch = None
    if main_branch is None:
        return skipped("main branch missing and failed to create")

    if main_branch.name == default_branch:
        logger.info(f"[Auto-Merge] Skipping {full_name}: main branch is the same as default branch")
        return skipped(f"main branch is the same as default branch ({default_branch})")

    inactivity = check_branch_inactivity(ctx, repo_name, branch)
    if inactivity['skip']:
        return skipped(inactivity['reason'])

    return attempt_merge(ctx, repo_name, default_branch, inactivity['days_since_last_commit'])


def process_organization(
    config: dict,
    org: str,
    cutoff_time: datetime,
    inactivity_days: int,
    now: datetime,
    rate_limiter: Optional[RateLimiter] = None,
    dry_run: bool = False,
) -> AutoMergeResult:
    """
    Process every repository of one organization in listing order.

    Authentication and listing failures are recorded as a single error for
    the organization. Stops early when the fork guard fires.
    """
    logger.info(f"[Auto-Merge] Processing organization: {org}")
    result = AutoMergeResult()
    org_url = f"https://github.com/orgs/{org}"

    try:
        gh = authenticate_organization(config, org)
    except Exception as e:
        logger.error(f"[Auto-Merge] Authentication failed for {org}: {github_error_message(e)}")
        result.record_error(MergeError(
            scope='org', org=org, url=org_url, reason=github_error_message(e), stage='authenticate',
        ))
        return result

    repos = list_organization_repositories(gh, org)
    if repos is None:
        result.record_error(MergeError(
            scope='org', org=org, url=org_url, reason="Failed to list repositories", stage='list-repos',
        ))
        return result

    logger.info(f"[Auto-Merge] Found {len(repos)} repositories in {org}")

    ctx = ProcessingContext(
        gh=gh, org=org, cutoff_time=cutoff_time, inactivity_days=inactivity_days, now=now, dry_run=dry_run,
    )

    for repo in repos:
        if rate_limiter is not None:
            rate_limiter.acquire()
        try:
            repo_result = process_repository(ctx, repo)
        except Exception as e:
            logger.error(f"[Auto-Merge] Failed to process {org}/{repo.name}: {github_error_message(e)}")
            repo_result = RepositoryResult(error=_merge_error(ctx, repo.name, e, stage='unknown'))
        finally:
            if rate_limiter is not None:
                rate_limiter.record()

        if repo_result.outcome is not None:
            result.outcomes.append(repo_result.outcome)
        if repo_result.error is not None:
            result.record_error(repo_result.error)
        if repo_result.aborted:
            result.aborted = True
            return result

    return result


def run_auto_merge(
    config: dict,
    orgs: Optional[List[str]] = None,
    inactivity_days: Optional[int] = None,
    now: Optional[datetime] = None,
    rate_limiter: Optional[RateLimiter] = None,
    dry_run: bool = False,
) -> AutoMergeResult:
    """
    Run the branch auto-merge over every target organization.

    Args:
        config: Configuration dictionary
        orgs: Organizations to process (defaults to config 'orgs')
        inactivity_days: Inactivity threshold (defaults to config or 90)
        now: Reference time (defaults to the current time)
        rate_limiter: Optional limiter applied per repository
        dry_run: If True, report what would be merged without merging

    Returns:
        AutoMergeResult with all outcomes and errors
    """
    orgs = parse_orgs(orgs if orgs is not None else config.get('orgs', []))
    if inactivity_days is None:
        inactivity_days = int(config.get('inactivity_days', DEFAULT_INACTIVITY_DAYS))
    now = now or datetime.now(timezone.utc)
    cutoff_time = now - timedelta(days=inactivity_days)
    guard_scope = config.get('fork_guard_scope', FORK_GUARD_SCOPE_RUN)

    result = AutoMergeResult()

    for org in orgs:
        org_result = process_organization(
            config, org, cutoff_time, inactivity_days, now, rate_limiter=rate_limiter, dry_run=dry_run,
        )
        result.extend(org_result)

        if org_result.aborted and guard_scope == FORK_GUARD_SCOPE_RUN:
            logger.warning(f"[Auto-Merge] Fork guard fired in {org}, stopping the run")
            break

    logger.info(
        f"[Auto-Merge] Completed: {len(result.outcomes)} outcomes, "
        f"{result.errors} errors, {result.warnings} warnings"
    )
    return result


# =============================================================================
# Configuration
# =============================================================================


def apply_env_overrides(config: dict, env=None) -> dict:
    """
    Fill configuration gaps from environment variables.

    APP_ID, APP_PRIVATE_KEY, GITHUB_TOKEN, TARGET_ORGS and INACTIVITY_DAYS
    are used when the corresponding config keys are absent.
    """
    env = os.environ if env is None else env
    config = apply_github_env_overrides(config, env)
    if not config.get('orgs') and env.get('TARGET_ORGS'):
        config['orgs'] = env['TARGET_ORGS']
    if 'inactivity_days' not in config and env.get('INACTIVITY_DAYS'):
        config['inactivity_days'] = env['INACTIVITY_DAYS']
    return config


def validate_config(config: dict) -> None:
    """
    Validate the branch auto-merge configuration.

    Raises:
        ConfigurationError: If credentials, organizations or the inactivity
            threshold are missing or invalid
    """
    validate_github_config(config)

    config['orgs'] = parse_orgs(config.get('orgs') or [])

    raw_days = config.get('inactivity_days', DEFAULT_INACTIVITY_DAYS)
    try:
        days = int(raw_days)
    except (TypeError, ValueError):
        raise ConfigurationError(f"inactivity_days must be a non-negative integer, got {raw_days!r}") from None
    if days < 0 or str(raw_days).strip() != str(days):
        raise ConfigurationError(f"inactivity_days must be a non-negative integer, got {raw_days!r}")
    config['inactivity_days'] = days

    if config.get('fork_guard_scope', FORK_GUARD_SCOPE_RUN) not in (
        FORK_GUARD_SCOPE_RUN, FORK_GUARD_SCOPE_ORGANIZATION
    ):
        raise ConfigurationError("fork_guard_scope must be 'run' or 'organization'")
    build_rate_limiter(config)


def load_config(config_path: str) -> dict:
    """Load configuration from a YAML file, apply environment overrides and validate."""
    config = {}
    if os.path.exists(config_path):
        with open(config_path, 'r', encoding='utf-8') as f:
            config = yaml.safe_load(f) or {}
    elif not os.environ.get('TARGET_ORGS'):
        raise FileNotFoundError(config_path)
    config = apply_env_overrides(config)
    validate_config(config)
    return config


def main() -> Optional[int]:
    """Main entry point for the script."""
    parser = argparse.ArgumentParser(
        description='Merge inactive development branches into main across GitHub organizations.'
    )
    parser.add_argument(
        '-c', '--config',
        default='config.yaml',
        help='Path to configuration file (default: config.yaml)'
    )
    parser.add_argument(
        '--org',
        action='append',
        dest='orgs',
        help='Organization to process (repeatable, overrides the configured list)'
    )
    parser.add_argument(
        '--inactivity-days',
        type=int,
        help='Days without human commits before a branch is merged'
    )
    parser.add_argument(
        '--summary-file',
        help='Append the Markdown report to this file (default: $GITHUB_STEP_SUMMARY)'
    )
    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='Report what would be merged without merging'
    )
    parser.add_argument(
        '-v', '--verbose',
        action='store_true',
        help='Enable verbose logging'
    )

    args = parser.parse_args()

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        config = load_config(args.config)
    except FileNotFoundError:
        logger.error(f"Configuration file not found: {args.config}")
        return 1
    except yaml.YAMLError as e:
        logger.error(f"Invalid YAML in configuration file: {e}")
        return 1
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return 1

    result = run_auto_merge(
        config,
        orgs=args.orgs,
        inactivity_days=args.inactivity_days,
        rate_limiter=build_rate_limiter(config),
        dry_run=args.dry_run,
    )

    logger.info("=" * 50)
    logger.info("Auto-Merge Summary")
    logger.info("=" * 50)
    log_outcomes(result.outcomes)
    for error in result.errors_detail:
        log = logger.warning if error.severity == 'warning' else logger.error
        log(f"  - [{error.stage}] {error.org}/{error.repo or '-'}: {error.reason} ({error.url})")
    if result.aborted:
        logger.warning("Run aborted by the fork safety guard")

    write_github_summary(
        render_merge_summary(
            result.outcomes, result.errors, result.errors_detail,
            warnings=result.warnings, aborted=result.aborted,
        ),
        path=args.summary_file,
    )

    return 1 if result.errors > 0 else 0


if __name__ == '__main__':
    exit(main())
