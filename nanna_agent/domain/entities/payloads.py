from typing import Dict, List, Optional, Union, Literal, ClassVar, Annotated
from pydantic import BaseModel, Field
from datetime import datetime
from enum import Enum
from pathlib import Path

from nanna_agent.domain.entities.entity_types import EntityType


LANGUAGE_BY_SUFFIX: Dict[str, str] = {
    ".py": "python",
    ".rs": "rust",
    ".js": "javascript",
    ".ts": "typescript",
    ".tsx": "typescript",
    ".go": "go",
    ".java": "java",
    ".c": "c",
    ".h": "c",
    ".cpp": "cpp",
    ".rb": "ruby",
    ".sh": "shell",
    ".nix": "nix",
    ".md": "markdown",
    ".toml": "toml",
    ".yaml": "yaml",
    ".yml": "yaml",
    ".json": "json",
}

PREVIEW_LINES = 20


# Git payloads

class GitRepositoryPayload(BaseModel):
    """Snapshot of a git repository"""
    entity_type: ClassVar[EntityType] = EntityType.GIT
    kind: Literal["git_repository"] = "git_repository"
    remote_url: Optional[str] = None
    default_branch: str = Field(default="main")
    remotes: Dict[str, str] = Field(default_factory=dict, description="Remote name to URL")
    submodules: Dict[str, str] = Field(default_factory=dict, description="Submodule path to URL")
    current_branch: Optional[str] = None
    head_commit: Optional[str] = Field(None, description="Short SHA of HEAD")
    is_dirty: bool = False
    staged_files: List[str] = Field(default_factory=list)
    modified_files: List[str] = Field(default_factory=list)
    untracked_files: List[str] = Field(default_factory=list)

    @classmethod
    def from_repo(cls, path: Union[str, Path]) -> "GitRepositoryPayload":
        """Read a snapshot of the repository at path"""

        # GitPython needs a git executable at import time
        from nanna_agent.domain.entities.git_state import read_repository
        return read_repository(path)


class GitBranchPayload(BaseModel):
    """A single local or remote branch"""
    entity_type: ClassVar[EntityType] = EntityType.GIT
    kind: Literal["git_branch"] = "git_branch"
    name: str
    is_remote: bool = False
    remote: Optional[str] = None
    upstream: Optional[str] = None
    head_commit: Optional[str] = None
    ahead: int = 0
    behind: int = 0


class GitCommitPayload(BaseModel):
    """A single commit"""
    entity_type: ClassVar[EntityType] = EntityType.GIT
    kind: Literal["git_commit"] = "git_commit"
    sha: str
    author: Optional[str] = None
    author_email: Optional[str] = None
    message: str = ""
    committed_at: Optional[datetime] = None
    parents: List[str] = Field(default_factory=list)
    files_changed: List[str] = Field(default_factory=list)

    @property
    def short_sha(self) -> str:
        return self.sha[:7]


class GitDiffPayload(BaseModel):
    """Diff between two refs"""
    entity_type: ClassVar[EntityType] = EntityType.GIT
    kind: Literal["git_diff"] = "git_diff"
    from_ref: str
    to_ref: str
    files_changed: List[str] = Field(default_factory=list)
    insertions: int = 0
    deletions: int = 0


class GitWorkingDirectoryPayload(BaseModel):
    """Working tree status snapshot"""
    entity_type: ClassVar[EntityType] = EntityType.GIT
    kind: Literal["git_working_directory"] = "git_working_directory"
    root_path: str
    staged_files: List[str] = Field(default_factory=list)
    modified_files: List[str] = Field(default_factory=list)
    untracked_files: List[str] = Field(default_factory=list)

    @property
    def is_clean(self) -> bool:
        return not (self.staged_files or self.modified_files or self.untracked_files)


# File payload

class FilePayload(BaseModel):
    """A workspace file with a short content preview"""
    entity_type: ClassVar[EntityType] = EntityType.FILE
    kind: Literal["file"] = "file"
    absolute_path: str
    relative_path: str
    language: str = Field(default="unknown", description="File-type classification")
    size_bytes: int = 0
    line_count: int = 0
    preview: str = ""

    @classmethod
    def from_path(cls, path: Path, workspace_root: Path, preview_lines: int = PREVIEW_LINES) -> "FilePayload":
        """Build a payload by reading a file on disk"""

        path = path.resolve()
        text = path.read_text(encoding="utf-8", errors="replace")
        lines = text.splitlines()

        try:
            relative = path.relative_to(workspace_root.resolve())
        except ValueError:
            relative = path

        return cls(
            absolute_path=str(path),
            relative_path=str(relative),
            language=LANGUAGE_BY_SUFFIX.get(path.suffix.lower(), "unknown"),
            size_bytes=path.stat().st_size,
            line_count=len(lines),
            preview="\n".join(lines[:preview_lines]),
        )


# Test payload

class TestStatus(str, Enum):
    """Outcome of a test run"""
    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"
    PENDING = "pending"


class TestPayload(BaseModel):
    """A test case or test run result"""
    __test__ = False

    entity_type: ClassVar[EntityType] = EntityType.TEST
    kind: Literal["test"] = "test"
    name: str = "unnamed"
    framework: Optional[str] = None
    status: TestStatus = Field(default=TestStatus.PENDING)
    duration_ms: Optional[float] = None
    failure_message: Optional[str] = None


# Context, environment and telemetry payloads

class ContextPayload(BaseModel):
    """Notes recorded by the agent about a request"""
    entity_type: ClassVar[EntityType] = EntityType.CONTEXT
    kind: Literal["context"] = "context"
    summary: str = ""
    source_request: Optional[str] = None
    references: List[str] = Field(default_factory=list, description="Referenced entity IDs")


class EnvironmentPayload(BaseModel):
    """Execution environment description"""
    entity_type: ClassVar[EntityType] = EntityType.ENVIRONMENT
    kind: Literal["environment"] = "environment"
    name: str = "default"
    platform: Optional[str] = None
    variables: Dict[str, str] = Field(default_factory=dict)


class TelemetryPayload(BaseModel):
    """A single recorded measurement"""
    entity_type: ClassVar[EntityType] = EntityType.TELEMETRY
    kind: Literal["telemetry"] = "telemetry"
    metric_name: str = "unnamed"
    value: float = 0.0
    unit: Optional[str] = None
    labels: Dict[str, str] = Field(default_factory=dict)


EntityPayload = Annotated[
    Union[
        GitRepositoryPayload,
        GitBranchPayload,
        GitCommitPayload,
        GitDiffPayload,
        GitWorkingDirectoryPayload,
        FilePayload,
        TestPayload,
        ContextPayload,
        EnvironmentPayload,
        TelemetryPayload,
    ],
    Field(discriminator="kind"),
]


def default_payload(entity_type: EntityType, label: str = "") -> BaseModel:
    """Build a minimal payload for an entity type"""

    if entity_type == EntityType.GIT:
        return GitRepositoryPayload()
    elif entity_type == EntityType.FILE:
        name = label or "untitled.txt"
        return FilePayload(absolute_path=f"/{name}", relative_path=name)
    elif entity_type == EntityType.TEST:
        return TestPayload(name=label or "unnamed")
    elif entity_type == EntityType.CONTEXT:
        return ContextPayload(summary=label)
    elif entity_type == EntityType.ENVIRONMENT:
        return EnvironmentPayload(name=label or "default")
    else:
        return TelemetryPayload(metric_name=label or "unnamed")
