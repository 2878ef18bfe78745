# leafnote/core/git.py
'''
Copyright 2025 Aaron Vose (avose@aaronvose.net)
Licensed under the LGPL v2.1; see the file 'LICENSE' for details.
'''

from __future__ import annotations

import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import List

# GitPython imports
from git import Actor, Repo, GitCommandError, InvalidGitRepositoryError
from git.exc import GitError as GitPythonError

__all__ = [
    "CommitInfo",
    "GitError",
    "init_repository",
    "create_commit",
    "get_commit_history",
    "has_uncommitted_changes",
    "count_changed_entries",
    "count_dirty_entries",
    "is_git_available",
]

AUTHOR = Actor("leafnote", "leafnote@localhost")

@dataclass
class CommitInfo:
    """Information about a Git commit"""
    hash: str
    date: str  # Format: "2026-10-16 20:45"
    message: str
    changed_entries: int

class GitError(Exception):
    """Git operation failed"""
    pass

def _get_repo(store_dir: str) -> Repo:
    """Get Repo instance with error handling"""
    try:
        return Repo(store_dir)
    except InvalidGitRepositoryError:
        raise GitError(f"Not a git repository: {store_dir}")
    except Exception as e:
        raise GitError(f"Failed to access repository: {e}")

def is_git_available() -> bool:
    """Check if Git is installed and GitPython can access it"""
    try:
        # Test by creating a temporary repo
        with tempfile.TemporaryDirectory() as temp_dir:
            Repo.init(temp_dir)
        return True
    except Exception:
        return False

def init_repository(store_dir: str) -> bool:
    """
    Initialize a Git repository if none exists.
    Returns True if repo exists or was created successfully.
    """
    git_dir = Path(store_dir) / '.git'

    try:
        if git_dir.exists():
            repo = _get_repo(store_dir)
        else:
            repo = Repo.init(store_dir, initial_branch="master")
            _configure_user_if_needed(repo)
        _ensure_initial_commit(repo)
        return True
    except GitError:
        raise
    except Exception as e:
        raise GitError(f"Failed to initialize repository: {e}")

def _ensure_initial_commit(repo: Repo) -> None:
    """Ensure repository has at least one commit (creates initial commit if needed)."""
    try:
        repo.head.commit
        return
    except ValueError:
        # HEAD points at an unborn branch
        pass
    repo.git.add('.')
    repo.index.commit("Initial commit", author=AUTHOR, committer=AUTHOR)

def _configure_user_if_needed(repo: Repo) -> None:
    """Set default Git user config if not already configured"""
    with repo.config_writer() as config:
        if not config.has_option('user', 'name'):
            config.set_value('user', 'name', AUTHOR.name)
        if not config.has_option('user', 'email'):
            config.set_value('user', 'email', AUTHOR.email)

def create_commit(store_dir: str, message: str) -> bool:
    """
    Stage all changes and create a commit.
    Returns False when there was nothing to commit.
    """
    try:
        repo = _get_repo(store_dir)

        # Stage all changes (including deletions)
        repo.git.add('-A')

        if not repo.index.diff("HEAD"):
            return False

        repo.index.commit(message, author=AUTHOR, committer=AUTHOR)
        return True

    except GitCommandError as e:
        if 'nothing to commit' in str(e).lower():
            return False
        raise GitError(f"Git commit failed: {e}")
    except GitError:
        raise
    except Exception as e:
        raise GitError(f"Failed to create commit: {e}")

def has_uncommitted_changes(store_dir: str) -> bool:
    """
    Check if there are any uncommitted changes (staged or unstaged).
    Returns True if changes exist, False if working directory is clean.
    """
    try:
        repo = _get_repo(store_dir)
        return repo.is_dirty(untracked_files=True)
    except GitError:
        raise
    except Exception as e:
        raise GitError(f"Failed to check for changes: {e}")

def _is_entry_file(path: str) -> bool:
    return path.startswith('entries/') and path.endswith('/entry.json')

def count_changed_entries(store_dir: str, commit_hash: str = 'HEAD') -> int:
    """
    Count how many entry JSON files changed in the given commit.
    Returns 0 if unable to determine.
    """
    try:
        repo = _get_repo(store_dir)
        commit = repo.commit(commit_hash)
        if commit.parents:
            diffs = commit.parents[0].diff(commit)
            return sum(1 for d in diffs if _is_entry_file(d.a_path or d.b_path or ''))
        # First commit: everything in the tree is new
        return sum(1 for blob in commit.tree.traverse() if _is_entry_file(blob.path))
    except Exception:
        return 0

def count_dirty_entries(store_dir: str) -> int:
    """Count entry directories with uncommitted changes (modified, deleted or new)."""
    try:
        repo = _get_repo(store_dir)
        paths = {d.a_path or d.b_path for d in repo.index.diff(None)}
        paths |= {d.a_path or d.b_path for d in repo.index.diff("HEAD")}
        paths |= set(repo.untracked_files)
        entries = {p.rsplit('/', 1)[0] for p in paths if p.startswith('entries/')}
        return len(entries)
    except Exception:
        return 0

def get_commit_history(store_dir: str, limit: int = 100) -> List[CommitInfo]:
    """
    Get commit history with entry change counts.
    Returns list sorted by newest first.
    """
    try:
        repo = _get_repo(store_dir)

        commits = []
        for commit in repo.iter_commits(max_count=limit):
            commits.append(CommitInfo(
                hash=commit.hexsha,
                date=commit.committed_datetime.strftime('%Y-%m-%d %H:%M'),
                message=commit.message.strip(),
                changed_entries=count_changed_entries(store_dir, commit.hexsha),
            ))
        return commits

    except GitPythonError as e:
        if 'does not have any commits yet' in str(e).lower():
            return []  # Empty repo
        raise GitError(f"Failed to get commit history: {e}")
    except GitError:
        raise
    except Exception as e:
        raise GitError(f"Failed to get commit history: {e}")
