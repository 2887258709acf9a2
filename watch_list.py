"""
Persistent watch list of issues whose linked pull requests should be re-checked.

Maps (owner, repo) to the set of issue numbers currently watched, stored in a
SQLite key-value table keyed by (prefix, owner, repo). The value is a JSON
array of issue numbers. A repository key is deleted as soon as its issue set
becomes empty.

All mutating operations are set-membership toggles, so repeated or
interleaved calls from independent trigger invocations are safe without a
transaction wrapper. Storage errors (sqlite3.Error) propagate to the caller.
"""

import json
import logging
import sqlite3
from dataclasses import dataclass, field
from typing import List

from github_gateway import parse_github_url

logger = logging.getLogger(__name__)


KV_PREFIX = "cron"
DEFAULT_DATABASE_PATH = "./watch_list.db"


@dataclass
class WatchedRepository:
    owner: str
    repo: str
    issue_numbers: List[int] = field(default_factory=list)


def init_database(db_path: str) -> None:
    """
    Initialize the SQLite database for the watch list.

    Creates the database and table if they don't exist.

    Args:
        db_path: Path to the SQLite database file
    """
    with sqlite3.connect(db_path) as conn:
        cursor = conn.cursor()

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS kv_store (
                prefix TEXT NOT NULL,
                owner TEXT NOT NULL,
                repo TEXT NOT NULL,
                value TEXT NOT NULL,
                PRIMARY KEY (prefix, owner, repo)
            )
        ''')

        conn.commit()


def _load_numbers(value: str) -> List[int]:
    numbers = json.loads(value) if value else []
    return [int(number) for number in numbers]


def get_issue_numbers(db_path: str, owner: str, repo: str) -> List[int]:
    """
    Get the watched issue numbers of a repository.

    Returns:
        List of issue numbers (empty if the repository is not watched)
    """
    with sqlite3.connect(db_path) as conn:
        cursor = conn.cursor()
        cursor.execute('''
            SELECT value FROM kv_store
            WHERE prefix = ? AND owner = ? AND repo = ?
        ''', (KV_PREFIX, owner, repo))
        row = cursor.fetchone()

    if row:
        return _load_numbers(row[0])
    return []


def _set_issue_numbers(db_path: str, owner: str, repo: str, numbers: List[int]) -> None:
    with sqlite3.connect(db_path) as conn:
        cursor = conn.cursor()
        if numbers:
            cursor.execute('''
                INSERT INTO kv_store (prefix, owner, repo, value)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(prefix, owner, repo)
                DO UPDATE SET value = excluded.value
            ''', (KV_PREFIX, owner, repo, json.dumps(numbers)))
        else:
            cursor.execute('''
                DELETE FROM kv_store
                WHERE prefix = ? AND owner = ? AND repo = ?
            ''', (KV_PREFIX, owner, repo))
        conn.commit()


def add_issue(db_path: str, issue_url: str) -> None:
    """
    Start watching an issue. Adding an already watched issue is a no-op.

    Args:
        db_path: Path to the SQLite database file
        issue_url: Issue URL, e.g. https://github.com/owner/repo/issues/12
    """
    owner, repo, issue_number = parse_github_url(issue_url)
    current = get_issue_numbers(db_path, owner, repo)

    if issue_number not in current:
        current.append(issue_number)
        _set_issue_numbers(db_path, owner, repo, current)
        logger.debug(f"[Watch List] Added {owner}/{repo}#{issue_number}")


def remove_issue_by_number(db_path: str, owner: str, repo: str, issue_number: int) -> None:
    """Stop watching an issue; deletes the repository key once it has no issues left."""
    current = get_issue_numbers(db_path, owner, repo)
    remaining = [number for number in current if number != issue_number]
    _set_issue_numbers(db_path, owner, repo, remaining)
    logger.debug(f"[Watch List] Removed {owner}/{repo}#{issue_number}")


def remove_issue(db_path: str, issue_url: str) -> None:
    owner, repo, issue_number = parse_github_url(issue_url)
    remove_issue_by_number(db_path, owner, repo, issue_number)


def update_issue(db_path: str, current_url: str, new_url: str) -> None:
    """Move a watched issue to a new URL (e.g. after an issue transfer)."""
    remove_issue(db_path, current_url)
    add_issue(db_path, new_url)


def get_all_repositories(db_path: str) -> List[WatchedRepository]:
    """List every watched repository with its issue numbers."""
    with sqlite3.connect(db_path) as conn:
        cursor = conn.cursor()
        cursor.execute('''
            SELECT owner, repo, value FROM kv_store
            WHERE prefix = ?
            ORDER BY owner, repo
        ''', (KV_PREFIX,))
        rows = cursor.fetchall()

    return [
        WatchedRepository(owner=row[0], repo=row[1], issue_numbers=_load_numbers(row[2]))
        for row in rows
    ]


def has_data(db_path: str) -> bool:
    """True if at least one repository has at least one watched issue."""
    return any(entry.issue_numbers for entry in get_all_repositories(db_path))


def prune_empty_entries(db_path: str) -> int:
    """
    Delete repository keys whose issue list is empty.

    Returns:
        Number of keys deleted
    """
    pruned = 0
    for entry in get_all_repositories(db_path):
        if not entry.issue_numbers:
            _set_issue_numbers(db_path, entry.owner, entry.repo, [])
            pruned += 1
    if pruned:
        logger.info(f"[Watch List] Pruned {pruned} empty repository entries")
    return pruned
