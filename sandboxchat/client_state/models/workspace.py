"""Workspace data models.

A workspace is an isolated sandbox bound to one repository and branch, created
and torn down by the remote provisioning service.  These models mirror the
service's camelCase JSON; Python code uses the snake_case attribute names.
"""

from __future__ import annotations

from datetime import datetime
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from sandboxchat.client_state.models.enums import WorkspaceStatus

LOCAL_WORKSPACE_ID = "local"
"""Reserved id of the non-sandboxed local development workspace."""

_REPO_URL_SCHEMES = ("http", "https", "git", "ssh")


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)


class Workspace(_WireModel):
    """Workspace record as reported by the provisioning service."""

    id: str
    repo_url: str = Field(alias="repoUrl")
    branch: str
    status: WorkspaceStatus
    opencode_url: str | None = Field(default=None, alias="opencodeUrl")
    preview_urls: dict[int, str] = Field(default_factory=dict, alias="previewUrls")
    error: str | None = None
    created_at: datetime = Field(alias="createdAt")
    updated_at: datetime = Field(alias="updatedAt")

    @model_validator(mode="before")
    @classmethod
    def _default_updated_at(cls, data: object) -> object:
        # Create responses carry only createdAt.
        if isinstance(data, dict) and "updatedAt" not in data and "updated_at" not in data:
            created = data.get("createdAt", data.get("created_at"))
            if created is not None:
                data = {**data, "updatedAt": created}
        return data

    @property
    def is_local(self) -> bool:
        return self.id == LOCAL_WORKSPACE_ID

    @property
    def is_ready(self) -> bool:
        return self.status == WorkspaceStatus.READY and self.opencode_url is not None


class CreateWorkspaceRequest(_WireModel):
    """Input for provisioning a new workspace."""

    repo_url: str = Field(alias="repoUrl")
    branch: str = "main"

    @field_validator("repo_url")
    @classmethod
    def _check_repo_url(cls, value: str) -> str:
        value = value.strip()
        parsed = urlparse(value)
        if parsed.scheme not in _REPO_URL_SCHEMES or not parsed.netloc:
            msg = "Must be a valid repository URL"
            raise ValueError(msg)
        if parsed.path.strip("/") == "":
            msg = "Repository URL must include a repository path"
            raise ValueError(msg)
        return value

    @field_validator("branch")
    @classmethod
    def _check_branch(cls, value: str) -> str:
        value = value.strip()
        if not value or any(ch.isspace() for ch in value):
            msg = f"Invalid branch name: {value!r}"
            raise ValueError(msg)
        return value

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True)


class DeleteWorkspaceResponse(_WireModel):
    success: bool
    id: str
