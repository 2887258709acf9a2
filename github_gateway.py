"""
GitHub gateway for the repo-maintainer auto-merge tools.

Thin wrappers around PyGithub used by both the branch auto-merger and the
pull request auto-merger:
- Timestamp and identity helpers (URL parsing, bot detection)
- Client creation for GitHub App installations or personal tokens
- A sliding-window rate limiter for high-volume sweeps
- Repository, branch, merge, pull request and workflow calls

Expected "not found" and "conflict" answers from the API are turned into
sentinels or results here. Any other GithubException propagates to the caller.
"""

import base64
import binascii
import json
import logging
import os
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterator, List, NamedTuple, Optional
from urllib.parse import urlparse

from github import Auth, Github, GithubException, GithubIntegration, UnknownObjectException

logger = logging.getLogger(__name__)


MAIN_BRANCH = "main"
DEFAULT_DEVELOPMENT_BRANCH = "development"
BOT_MARKER = "[bot]"
PER_PAGE = 100

# Remote error text used to detect a merge whose base ref does not exist yet
BASE_MISSING_ERROR = "Base does not exist"

DEFAULT_RATE_LIMIT_MAX_ITEMS = 500
DEFAULT_RATE_LIMIT_WINDOW_SECONDS = 60.0


class ConfigurationError(Exception):
    """Raised when configuration is invalid or missing required fields."""


class IssueParams(NamedTuple):
    owner: str
    repo: str
    issue_number: int


@dataclass(frozen=True)
class BranchSnapshot:
    """Tip of a branch at fetch time."""
    name: str
    head_sha: str
    committer_date: Optional[datetime] = None
    author_date: Optional[datetime] = None
    committer_name: Optional[str] = None
    author_name: Optional[str] = None


@dataclass(frozen=True)
class CommitRecord:
    sha: str
    author_name: Optional[str]
    committer_name: Optional[str]
    date: Optional[datetime]
    automated: bool = False


@dataclass(frozen=True)
class MergeAttemptResult:
    """Result of POST /repos/{owner}/{repo}/merges, keyed by the HTTP status."""
    status: int
    sha: Optional[str] = None


# =============================================================================
# Timestamp and identity helpers
# =============================================================================


def parse_github_url(url: str) -> IssueParams:
    """
    Parse an issue or pull request URL into owner, repo and number.

    Args:
        url: URL such as https://github.com/owner/repo/issues/12

    Returns:
        IssueParams tuple

    Raises:
        ValueError: If the URL does not have exactly owner/repo/kind/number segments
    """
    path = urlparse(url).path.split('/')
    if len(path) != 5:
        raise ValueError(f"[parse_github_url] Invalid url: [{url}]")
    try:
        number = int(path[4])
    except ValueError:
        raise ValueError(f"[parse_github_url] Invalid url: [{url}]") from None
    return IssueParams(owner=path[1], repo=path[2], issue_number=number)


def parse_timestamp(value) -> datetime:
    """
    Parse a GitHub timestamp into a timezone-aware UTC datetime.

    Accepts datetime objects (as returned by PyGithub) and ISO 8601 strings
    (as found in raw timeline payloads). Naive values are assumed to be UTC.

    Raises:
        ValueError: If the value cannot be parsed
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        date_str = value.strip()
        if date_str.endswith('Z'):
            date_str = date_str[:-1] + '+00:00'
        try:
            parsed = datetime.fromisoformat(date_str)
        except ValueError:
            raise ValueError(f"Unable to parse date: {value}") from None
    else:
        raise ValueError(f"Unable to parse date: {value!r}")

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def first_valid_timestamp(candidates) -> Optional[datetime]:
    """Return the first candidate that parses as a timestamp, or None."""
    for candidate in candidates:
        if not candidate:
            continue
        try:
            return parse_timestamp(candidate)
        except ValueError:
            continue
    return None


def is_bot_name(name: Optional[str]) -> bool:
    """Commit author/committer names containing "[bot]" are automated."""
    return bool(name) and BOT_MARKER in name.lower()


def is_human_account(user) -> bool:
    """
    Classify a GitHub account as human.

    Args:
        user: PyGithub NamedUser (or None)

    Returns:
        False for accounts of type "Bot" or with a bot login, True otherwise
    """
    if user is None:
        return True
    if getattr(user, 'type', None) == 'Bot':
        return False
    return not is_bot_name(getattr(user, 'login', None))


def normalize_private_key(raw: str) -> str:
    """
    Normalize a GitHub App private key.

    The key may be given as raw PEM, as PEM with literal "\\n" escapes (as in
    single-line environment variables) or base64 encoded.
    """
    material = raw
    if 'BEGIN' not in raw:
        try:
            material = base64.b64decode(raw, validate=True).decode('utf-8')
        except (binascii.Error, UnicodeDecodeError) as e:
            raise ConfigurationError(f"Private key is neither PEM nor base64: {e}") from e
    return material.replace('\\n', '\n')


def parse_orgs(raw) -> List[str]:
    """
    Parse the target organizations setting.

    Accepts a list, a JSON array string or a single organization name.

    Raises:
        ConfigurationError: If the value is empty or not a list of non-empty strings
    """
    if isinstance(raw, str):
        text = raw.strip()
        if not text:
            raise ConfigurationError("Target organizations must not be empty")
        if text.startswith('['):
            try:
                raw = json.loads(text)
            except json.JSONDecodeError as e:
                raise ConfigurationError(
                    f"Target organizations must be a valid JSON array. Received: {text}"
                ) from e
        else:
            return [text]

    if not isinstance(raw, list) or not raw:
        raise ConfigurationError("Target organizations must be a non-empty list")
    if any(not isinstance(org, str) or not org.strip() for org in raw):
        raise ConfigurationError("Target organizations must be non-empty strings")
    return [org.strip() for org in raw]


def github_error_message(error: Exception) -> str:
    """Extract the API message from a GithubException, falling back to str()."""
    data = getattr(error, 'data', None)
    if isinstance(data, dict) and data.get('message'):
        return str(data['message'])
    return str(error)


def is_base_missing_error(error: Exception) -> bool:
    """True when a merge failed because the base branch does not exist."""
    return BASE_MISSING_ERROR in github_error_message(error) or BASE_MISSING_ERROR in str(error)


# =============================================================================
# Client creation
# =============================================================================


def apply_github_env_overrides(config: dict, env=None) -> dict:
    """
    Fill missing GitHub credentials from APP_ID, APP_PRIVATE_KEY and GITHUB_TOKEN.

    Returns a new configuration dictionary; the input is left untouched.
    """
    env = os.environ if env is None else env
    config = dict(config or {})
    github_config = dict(config.get('github') or {})

    if not github_config.get('app_id') and env.get('APP_ID'):
        github_config['app_id'] = env['APP_ID']
    if not github_config.get('private_key') and env.get('APP_PRIVATE_KEY'):
        github_config['private_key'] = env['APP_PRIVATE_KEY']
    if not github_config.get('token') and env.get('GITHUB_TOKEN'):
        github_config['token'] = env['GITHUB_TOKEN']
    if github_config:
        config['github'] = github_config
    return config


def validate_github_config(config: dict) -> None:
    """
    Validate the 'github' configuration section.

    Raises:
        ConfigurationError: If neither a token nor GitHub App credentials are configured
    """
    if not config:
        raise ConfigurationError("Configuration is empty")

    github_config = config.get('github')
    if not github_config:
        raise ConfigurationError("Missing 'github' section in configuration")
    if not github_config.get('token') and not (github_config.get('app_id') and github_config.get('private_key')):
        raise ConfigurationError(
            "GitHub credentials missing: configure 'token' or both 'app_id' and 'private_key'"
        )


def _client_kwargs(github_config: dict) -> dict:
    kwargs = {'per_page': PER_PAGE}
    if github_config.get('api_url'):
        kwargs['base_url'] = github_config['api_url']
    return kwargs


def create_github_client(config: dict) -> Github:
    """
    Create a GitHub client authenticated with a personal access token.

    Args:
        config: Configuration dictionary with 'github' section

    Returns:
        PyGithub Github client

    Raises:
        ConfigurationError: If no token is configured
    """
    github_config = config.get('github') or {}
    token = github_config.get('token')
    if not token:
        raise ConfigurationError("Missing required GitHub config key: 'token'")
    return Github(auth=Auth.Token(token), **_client_kwargs(github_config))


def create_app_integration(config: dict) -> GithubIntegration:
    """Create a GitHub App integration from 'github.app_id' and 'github.private_key'."""
    github_config = config.get('github') or {}
    app_id = github_config.get('app_id')
    private_key = github_config.get('private_key')
    if not app_id or not private_key:
        raise ConfigurationError("GitHub App auth requires 'app_id' and 'private_key'")
    auth = Auth.AppAuth(int(app_id), normalize_private_key(str(private_key)))
    kwargs = {}
    if github_config.get('api_url'):
        kwargs['base_url'] = github_config['api_url']
    return GithubIntegration(auth=auth, **kwargs)


def authenticate_organization(config: dict, org: str) -> Github:
    """
    Create a client scoped to an organization.

    Token configurations share one client for every organization. GitHub App
    configurations look up the app installation for the organization.

    Raises:
        GithubException: If the installation cannot be found or authenticated
        ConfigurationError: If no usable credentials are configured
    """
    github_config = config.get('github') or {}
    if github_config.get('token'):
        return create_github_client(config)

    integration = create_app_integration(config)
    try:
        installation = integration.get_org_installation(org)
    except GithubException as e:
        logger.error(f"[Auto-Merge] Failed to authenticate for org {org}: {github_error_message(e)}")
        raise
    return integration.get_github_for_installation(installation.id)


def authenticate_repository(config: dict, owner: str, repo: str) -> Github:
    """Same as authenticate_organization, using the repository's installation."""
    github_config = config.get('github') or {}
    if github_config.get('token'):
        return create_github_client(config)

    integration = create_app_integration(config)
    installation = integration.get_repo_installation(owner, repo)
    return integration.get_github_for_installation(installation.id)


# =============================================================================
# Rate limiting
# =============================================================================


class RateLimiter:
    """
    Sliding-window rate limiter.

    Allows at most max_items operations per window. Once the cap is reached,
    acquire() sleeps for the remainder of the window and starts a new one.
    Construct one per run and pass it to the code that needs it.
    """

    def __init__(
        self,
        max_items: int = DEFAULT_RATE_LIMIT_MAX_ITEMS,
        window_seconds: float = DEFAULT_RATE_LIMIT_WINDOW_SECONDS,
        clock=time.monotonic,
        sleep=time.sleep,
    ):
        if max_items < 1:
            raise ValueError("max_items must be a positive integer")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self.max_items = max_items
        self.window_seconds = window_seconds
        self._clock = clock
        self._sleep = sleep
        self.window_start = clock()
        self.processed = 0

    def acquire(self) -> None:
        now = self._clock()
        elapsed = now - self.window_start

        if elapsed >= self.window_seconds:
            self.window_start = now
            self.processed = 0
            return

        if self.processed >= self.max_items:
            wait_seconds = self.window_seconds - elapsed
            logger.info(
                f"Rate limit reached ({self.processed} items in {self.window_seconds}s window), "
                f"waiting {wait_seconds:.1f}s for reset"
            )
            self._sleep(wait_seconds)
            self.window_start = self._clock()
            self.processed = 0

    def record(self) -> None:
        self.processed += 1


def build_rate_limiter(config: dict) -> RateLimiter:
    """
    Create a RateLimiter from the optional 'rate_limit' configuration section.

    Raises:
        ConfigurationError: If max_items or window_seconds is not a positive number
    """
    settings = config.get('rate_limit') or {}
    raw_items = settings.get('max_items', DEFAULT_RATE_LIMIT_MAX_ITEMS)
    raw_window = settings.get('window_seconds', DEFAULT_RATE_LIMIT_WINDOW_SECONDS)
    try:
        max_items = int(raw_items)
        window_seconds = float(raw_window)
    except (TypeError, ValueError):
        raise ConfigurationError(
            f"rate_limit settings must be numeric, got max_items={raw_items!r} window_seconds={raw_window!r}"
        ) from None
    if max_items < 1 or window_seconds <= 0:
        raise ConfigurationError("rate_limit.max_items and rate_limit.window_seconds must be positive")
    return RateLimiter(max_items=max_items, window_seconds=window_seconds)


# =============================================================================
# Repository, branch and merge calls
# =============================================================================


def _repo(gh: Github, owner: str, repo: str):
    return gh.get_repo(f"{owner}/{repo}", lazy=True)


def get_repository(gh: Github, owner: str, repo: str):
    """Fetch full repository metadata. Errors propagate."""
    return gh.get_repo(f"{owner}/{repo}")


def list_organization_repositories(gh: Github, org: str) -> Optional[list]:
    """
    Fetch every repository of an organization.

    Returns:
        List of PyGithub Repository objects, or None when the listing failed
        (an empty list means the organization has no repositories)
    """
    try:
        return list(gh.get_organization(org).get_repos())
    except Exception as e:
        logger.error(f"[Auto-Merge] Failed to list repos for {org}: {github_error_message(e)}")
        return None


def _snapshot_from_branch(branch) -> BranchSnapshot:
    commit = branch.commit
    git_commit = getattr(commit, 'commit', None)
    committer = getattr(git_commit, 'committer', None)
    author = getattr(git_commit, 'author', None)
    return BranchSnapshot(
        name=branch.name,
        head_sha=commit.sha,
        committer_date=getattr(committer, 'date', None),
        author_date=getattr(author, 'date', None),
        committer_name=getattr(committer, 'name', None),
        author_name=getattr(author, 'name', None),
    )


def get_branch(gh: Github, owner: str, repo: str, branch_name: str) -> Optional[BranchSnapshot]:
    """
    Fetch the tip of a branch.

    Returns:
        BranchSnapshot, or None when the branch does not exist (404)
    """
    try:
        branch = _repo(gh, owner, repo).get_branch(branch_name)
    except UnknownObjectException:
        logger.debug(f"Branch {branch_name} not found in {owner}/{repo}")
        return None
    return _snapshot_from_branch(branch)


def get_main_branch(gh: Github, owner: str, repo: str) -> Optional[BranchSnapshot]:
    return get_branch(gh, owner, repo, MAIN_BRANCH)


def create_main_branch_from(gh: Github, owner: str, repo: str, source_branch: str) -> bool:
    """
    Create the main branch at the head of source_branch.

    Does nothing when main already exists.

    Returns:
        True if the ref was created, False if main already existed

    Raises:
        GithubException: If the source branch is missing or ref creation fails
    """
    if get_main_branch(gh, owner, repo) is not None:
        logger.info(f"[Auto-Merge] main branch already exists in {owner}/{repo}")
        return False

    source = get_branch(gh, owner, repo, source_branch)
    if source is None:
        raise GithubException(404, {'message': f"Branch {source_branch} not found"}, None)

    _repo(gh, owner, repo).create_git_ref(ref=f"refs/heads/{MAIN_BRANCH}", sha=source.head_sha)
    logger.info(f"[Auto-Merge] Created main branch for {owner}/{repo} from {source_branch}")
    return True


def merge_branches(
    gh: Github,
    owner: str,
    repo: str,
    head: str,
    message: str,
    base: str = MAIN_BRANCH,
) -> MergeAttemptResult:
    """
    Merge head into base through the merges API.

    Returns:
        MergeAttemptResult with status 201 (merge commit created, with sha),
        204 (base already contains head) or 409 (merge conflict)

    Raises:
        GithubException: For any other failure, including a missing base branch
    """
    try:
        commit = _repo(gh, owner, repo).merge(base, head, message)
    except GithubException as e:
        if e.status == 409:
            return MergeAttemptResult(status=409)
        raise
    if commit is None:
        return MergeAttemptResult(status=204)
    return MergeAttemptResult(status=201, sha=commit.sha)


def open_fallback_pull_request(
    gh: Github,
    owner: str,
    repo: str,
    head: str,
    base: str = MAIN_BRANCH,
):
    """Open a pull request from head into base after a conflicting merge."""
    pull = _repo(gh, owner, repo).create_pull(
        base=base,
        head=head,
        title=f"Merge {head} into {base}",
        body=f"Automated PR to merge {head} into {base} branch.",
    )
    logger.info(f"[Auto-Merge] Opened pull request for {owner}/{repo} to merge {head} into {base}")
    return pull


def list_branch_commits(gh: Github, owner: str, repo: str, branch_name: str) -> Iterator[CommitRecord]:
    """
    Iterate a branch's history newest-first, one API page (up to 100) at a time.

    Pages are only fetched as the caller consumes the iterator.
    """
    for commit in _repo(gh, owner, repo).get_commits(sha=branch_name):
        git_commit = commit.commit
        author = getattr(git_commit, 'author', None)
        committer = getattr(git_commit, 'committer', None)
        yield CommitRecord(
            sha=commit.sha,
            author_name=getattr(author, 'name', None),
            committer_name=getattr(committer, 'name', None),
            date=first_valid_timestamp([
                getattr(committer, 'date', None),
                getattr(author, 'date', None),
            ]),
            automated=not is_human_account(getattr(commit, 'author', None)),
        )


# =============================================================================
# Pull request calls
# =============================================================================


def list_open_pull_requests(gh: Github, owner: str, repo: str, head: Optional[str] = None) -> list:
    """List open pull requests, optionally restricted to a "user:branch" head."""
    kwargs = {'state': 'open'}
    if head:
        kwargs['head'] = head
    return list(_repo(gh, owner, repo).get_pulls(**kwargs))


def get_pull_request_details(gh: Github, params: IssueParams):
    return _repo(gh, params.owner, params.repo).get_pull(params.issue_number)


def get_timeline_events(gh: Github, params: IssueParams) -> List[dict]:
    """Fetch the full issue timeline as raw event payloads."""
    issue = _repo(gh, params.owner, params.repo).get_issue(params.issue_number)
    return [event.raw_data for event in issue.get_timeline()]


def list_reviews(gh: Github, params: IssueParams) -> List[dict]:
    """List pull request reviews as {'state', 'author_association', 'user'} dicts."""
    pull = get_pull_request_details(gh, params)
    reviews = []
    for review in pull.get_reviews():
        raw = review.raw_data or {}
        reviews.append({
            'state': review.state,
            'author_association': raw.get('author_association'),
            'user': getattr(review.user, 'login', None),
        })
    return reviews


def list_check_suites(gh: Github, owner: str, repo: str, sha: str) -> list:
    return list(_repo(gh, owner, repo).get_commit(sha).get_check_suites())


def list_check_runs_for_suite(suite) -> List[dict]:
    """List a check suite's runs as {'id', 'name', 'status', 'conclusion', 'url'} dicts."""
    return [
        {
            'id': run.id,
            'name': run.name,
            'status': run.status,
            'conclusion': run.conclusion,
            'url': run.html_url,
        }
        for run in suite.get_check_runs()
    ]


def merge_pull_request(gh: Github, params: IssueParams):
    return get_pull_request_details(gh, params).merge()


# =============================================================================
# Workflow calls
# =============================================================================


def set_workflow_enabled(gh: Github, repository: str, workflow_id: str, enabled: bool) -> None:
    """
    Enable or disable a GitHub Actions workflow.

    Args:
        gh: Authenticated GitHub client
        repository: Repository in "owner/repo" format
        workflow_id: Workflow file name or id (e.g. "cron.yml")
        enabled: Desired state
    """
    workflow = gh.get_repo(repository).get_workflow(workflow_id)
    if enabled:
        workflow.enable()
    else:
        workflow.disable()
