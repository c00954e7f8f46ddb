"""GitLab webhook payload models and decoder.

Only the fields the relay renders are modelled; everything else in the
payload is ignored. JSON ``null`` values fall back to field defaults, which
GitLab sends freely (e.g. ``checkout_sha`` on tag removal).
"""

from __future__ import annotations

import json
from enum import Enum
from typing import Any, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from src.errors import EventDecodeError

HEADER_EVENT = "X-Gitlab-Event"
HEADER_TOKEN = "X-Gitlab-Token"

# Sentinel SHA for "no commit" (branch created or deleted)
NULL_SHA = "0000000000000000000000000000000000000000"


class EventType(str, Enum):
    PUSH = "Push Hook"
    TAG_PUSH = "Tag Push Hook"
    ISSUE = "Issue Hook"
    CONFIDENTIAL_ISSUE = "Confidential Issue Hook"
    NOTE = "Note Hook"
    CONFIDENTIAL_NOTE = "Confidential Note Hook"
    MERGE_REQUEST = "Merge Request Hook"
    JOB = "Job Hook"
    PIPELINE = "Pipeline Hook"
    WIKI_PAGE = "Wiki Page Hook"


class CIStatus(str, Enum):
    CREATED = "created"
    PENDING = "pending"
    RUNNING = "running"
    CANCELED = "canceled"
    FAILED = "failed"
    SUCCESS = "success"


class NoteableType(str, Enum):
    COMMIT = "Commit"
    MERGE_REQUEST = "MergeRequest"
    ISSUE = "Issue"
    SNIPPET = "Snippet"


class _Payload(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    @model_validator(mode="before")
    @classmethod
    def _drop_nulls(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return {k: v for k, v in data.items() if v is not None}
        return data


# --- Shared objects ---


class User(_Payload):
    name: str = ""
    username: str = ""


class Project(_Payload):
    id: int = 0
    name: str = ""
    homepage: str = ""
    web_url: str = ""


class Repository(_Payload):
    name: str = ""
    homepage: str = ""


class Commit(_Payload):
    id: str = ""
    message: str = ""
    url: str = ""


# --- Events ---


class PushEvent(_Payload):
    before: str = ""
    after: str = ""
    ref: str = ""
    checkout_sha: str = ""
    user_name: str = ""
    project: Project = Field(default_factory=Project)
    repository: Repository = Field(default_factory=Repository)
    commits: list[Commit] = Field(default_factory=list)


class TagPushEvent(_Payload):
    ref: str = ""
    checkout_sha: str = ""
    message: str = ""
    user_name: str = ""
    project: Project = Field(default_factory=Project)
    repository: Repository = Field(default_factory=Repository)


class IssueAttributes(_Payload):
    iid: int = 0
    title: str = ""
    description: str = ""
    url: str = ""
    action: str = ""


class IssueEvent(_Payload):
    user: User = Field(default_factory=User)
    project: Project = Field(default_factory=Project)
    object_attributes: IssueAttributes = Field(default_factory=IssueAttributes)


class MergeRequestAttributes(_Payload):
    iid: int = 0
    title: str = ""
    description: str = ""
    url: str = ""
    action: str = ""
    source_branch: str = ""
    target_branch: str = ""


class MergeRequestEvent(_Payload):
    user: User = Field(default_factory=User)
    project: Project = Field(default_factory=Project)
    object_attributes: MergeRequestAttributes = Field(default_factory=MergeRequestAttributes)


class NoteAttributes(_Payload):
    note: str = ""
    noteable_type: str = ""
    url: str = ""


class NoteIssue(_Payload):
    iid: int = 0
    title: str = ""


class NoteMergeRequest(_Payload):
    iid: int = 0
    title: str = ""


class NoteSnippet(_Payload):
    id: int = 0
    title: str = ""


class NoteEvent(_Payload):
    user: User = Field(default_factory=User)
    project: Project = Field(default_factory=Project)
    object_attributes: NoteAttributes = Field(default_factory=NoteAttributes)
    commit: Commit = Field(default_factory=Commit)
    issue: NoteIssue = Field(default_factory=NoteIssue)
    merge_request: NoteMergeRequest = Field(default_factory=NoteMergeRequest)
    snippet: NoteSnippet = Field(default_factory=NoteSnippet)


class WikiPageAttributes(_Payload):
    title: str = ""
    message: str = ""
    url: str = ""
    action: str = ""


class WikiPageEvent(_Payload):
    user: User = Field(default_factory=User)
    project: Project = Field(default_factory=Project)
    object_attributes: WikiPageAttributes = Field(default_factory=WikiPageAttributes)


class JobEvent(_Payload):
    ref: str = ""
    build_id: int = 0
    build_name: str = ""
    build_stage: str = ""
    build_status: str = ""
    pipeline_id: int = 0
    project_name: str = ""
    repository: Repository = Field(default_factory=Repository)


class PipelineAttributes(_Payload):
    id: int = 0
    ref: str = ""
    status: str = ""


class PipelineEvent(_Payload):
    object_attributes: PipelineAttributes = Field(default_factory=PipelineAttributes)
    user: User = Field(default_factory=User)
    project: Project = Field(default_factory=Project)


class UnknownEvent(BaseModel):
    """Any event type the relay has no dedicated rule for."""

    model_config = ConfigDict(frozen=True)

    event_type: str
    payload: Any = None


GitLabEvent = Union[
    PushEvent,
    TagPushEvent,
    IssueEvent,
    NoteEvent,
    MergeRequestEvent,
    WikiPageEvent,
    JobEvent,
    PipelineEvent,
    UnknownEvent,
]

_MODELS: dict[str, type[_Payload]] = {
    EventType.PUSH.value: PushEvent,
    EventType.TAG_PUSH.value: TagPushEvent,
    EventType.ISSUE.value: IssueEvent,
    EventType.CONFIDENTIAL_ISSUE.value: IssueEvent,
    EventType.NOTE.value: NoteEvent,
    EventType.CONFIDENTIAL_NOTE.value: NoteEvent,
    EventType.MERGE_REQUEST.value: MergeRequestEvent,
    EventType.JOB.value: JobEvent,
    EventType.PIPELINE.value: PipelineEvent,
    EventType.WIKI_PAGE.value: WikiPageEvent,
}


def decode_event(event_type: str, body: bytes) -> GitLabEvent:
    """Decode a webhook body according to its ``X-Gitlab-Event`` header.

    Raises:
        EventDecodeError: If the body is not valid JSON or does not fit the
            model for its event type.
    """
    try:
        payload = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise EventDecodeError(event_type, str(exc)) from exc

    model = _MODELS.get(event_type)
    if model is None:
        return UnknownEvent(event_type=event_type, payload=payload)

    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise EventDecodeError(event_type, str(exc)) from exc
