from typing import Iterator, List, Optional, Tuple, Union
from contextlib import contextmanager
from pathlib import Path
import structlog

from git import Head, RemoteReference, Repo
from git.exc import GitCommandError, InvalidGitRepositoryError, NoSuchPathError

from nanna_agent.domain.entities.entity_types import RelationshipType
from nanna_agent.domain.entities.errors import GitOperationError
from nanna_agent.domain.entities.models import Entity, EntityRelationship
from nanna_agent.domain.entities.payloads import (
    GitBranchPayload, GitCommitPayload, GitDiffPayload, GitRepositoryPayload, GitWorkingDirectoryPayload,
)
from nanna_agent.domain.entities.store import EntityStore

logger = structlog.get_logger(__name__)

PathLike = Union[str, Path]
SHORT_SHA = 7
WORKSPACE_TAG = "workspace"


@contextmanager
def open_repository(path: PathLike) -> Iterator[Repo]:
    """Open the repository at path and translate git failures"""

    try:
        repo = Repo(str(path))
    except (InvalidGitRepositoryError, NoSuchPathError) as e:
        raise GitOperationError(f"Repository not found at path: {path}", str(path)) from e

    try:
        yield repo
    except (GitCommandError, ValueError) as e:
        raise GitOperationError(f"Git error: {e}", str(path)) from e
    finally:
        repo.close()


def _working_tree_status(repo: Repo) -> Tuple[List[str], List[str], List[str]]:
    if repo.head.is_valid():
        staged = {d.a_path or d.b_path for d in repo.index.diff("HEAD")}
    else:
        staged = {entry_path for entry_path, _stage in repo.index.entries}
    modified = {d.a_path or d.b_path for d in repo.index.diff(None)}
    return sorted(staged), sorted(modified), sorted(repo.untracked_files)


def _commits_between(repo: Repo, base: str, tip: str) -> int:
    return sum(1 for _ in repo.iter_commits(f"{base}..{tip}"))


def _local_branch(repo: Repo, head: Head) -> GitBranchPayload:
    branch = GitBranchPayload(name=head.name, head_commit=head.commit.hexsha)

    tracking = head.tracking_branch()
    if tracking is not None and tracking.is_valid():
        branch.upstream = tracking.name
        branch.ahead = _commits_between(repo, tracking.name, head.name)
        branch.behind = _commits_between(repo, head.name, tracking.name)
    return branch


def _commit(commit) -> GitCommitPayload:
    return GitCommitPayload(
        sha=commit.hexsha,
        author=commit.author.name,
        author_email=commit.author.email,
        message=commit.message.strip(),
        committed_at=commit.committed_datetime,
        parents=[parent.hexsha for parent in commit.parents],
        files_changed=sorted(str(name) for name in commit.stats.files),
    )


def read_repository(path: PathLike) -> GitRepositoryPayload:
    """Remotes, submodules, HEAD and working tree status of a repository"""

    with open_repository(path) as repo:
        current_branch = None if repo.head.is_detached else repo.active_branch.name
        remotes = {remote.name: remote.url for remote in repo.remotes}
        staged, modified, untracked = _working_tree_status(repo)

        payload = GitRepositoryPayload(
            remote_url=remotes.get("origin"),
            default_branch=current_branch or "main",
            remotes=remotes,
            submodules={module.path: module.url for module in repo.submodules},
            current_branch=current_branch,
            head_commit=repo.head.commit.hexsha[:SHORT_SHA] if repo.head.is_valid() else None,
            is_dirty=bool(staged or modified or untracked),
            staged_files=staged,
            modified_files=modified,
            untracked_files=untracked,
        )

    logger.debug("Read repository", path=str(path), branch=current_branch, remotes=len(remotes))
    return payload


def read_current_branch(path: PathLike) -> GitBranchPayload:
    with open_repository(path) as repo:
        if repo.head.is_detached:
            raise GitOperationError("Branch not found: detached HEAD", str(path))
        if not repo.head.is_valid():
            raise GitOperationError("No HEAD commit found", str(path))
        return _local_branch(repo, repo.active_branch)


def read_head_commit(path: PathLike) -> GitCommitPayload:
    with open_repository(path) as repo:
        if not repo.head.is_valid():
            raise GitOperationError("No HEAD commit found", str(path))
        return _commit(repo.head.commit)


def read_working_directory(path: PathLike) -> GitWorkingDirectoryPayload:
    with open_repository(path) as repo:
        staged, modified, untracked = _working_tree_status(repo)
        return GitWorkingDirectoryPayload(
            root_path=str(repo.working_tree_dir),
            staged_files=staged,
            modified_files=modified,
            untracked_files=untracked,
        )


def read_local_branches(path: PathLike) -> List[GitBranchPayload]:
    with open_repository(path) as repo:
        return [_local_branch(repo, head) for head in sorted(repo.heads, key=lambda h: h.name)]


def read_remote_branches(path: PathLike) -> List[GitBranchPayload]:
    with open_repository(path) as repo:
        branches = []
        for ref in repo.references:
            if not isinstance(ref, RemoteReference) or ref.remote_head == "HEAD":
                continue
            branches.append(GitBranchPayload(
                name=ref.remote_head,
                is_remote=True,
                remote=ref.remote_name,
                head_commit=ref.commit.hexsha,
            ))
        return sorted(branches, key=lambda b: (b.remote, b.name))


def read_diff(path: PathLike, from_ref: str, to_ref: str = "HEAD") -> GitDiffPayload:
    """Files and line counts changed between two refs"""

    with open_repository(path) as repo:
        numstat = repo.git.diff(from_ref, to_ref, numstat=True)

    diff = GitDiffPayload(from_ref=from_ref, to_ref=to_ref)
    for line in numstat.splitlines():
        parts = line.split("\t")
        if len(parts) != 3:
            continue
        insertions, deletions, file_path = parts
        diff.files_changed.append(file_path)
        # Binary files report "-" for both counts
        if insertions.isdigit():
            diff.insertions += int(insertions)
        if deletions.isdigit():
            diff.deletions += int(deletions)
    return diff


async def import_repository(store: EntityStore, path: PathLike, tags: Optional[List[str]] = None) -> List[str]:
    """Store the repository, its current branch, HEAD commit and working tree as entities.

    The branch, commit and working tree entities are linked to the
    repository entity with CONTAINS edges. A detached or empty repository
    contributes only the entities that can be read.
    """

    tags = tags or [WORKSPACE_TAG]
    repository = Entity.create(read_repository(path), tags=tags)
    parts = [Entity.create(read_working_directory(path), tags=tags)]
    if repository.payload.head_commit is not None:
        parts.append(Entity.create(read_head_commit(path), tags=tags))
        if repository.payload.current_branch is not None:
            parts.append(Entity.create(read_current_branch(path), tags=tags))

    await store.store(repository)
    for part in parts:
        await store.store(part)
        await store.create_relationship(EntityRelationship(
            from_id=repository.id,
            to_id=part.id,
            kind=RelationshipType.CONTAINS,
        ))

    logger.info("Imported repository", path=str(path), entities=len(parts) + 1)
    return [repository.id] + [part.id for part in parts]
