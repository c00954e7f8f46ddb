"""Turns decoded GitLab events into chat notifications.

Every function here is pure apart from logging. Job and pipeline events come
back as :class:`PipelineUpdate` so the coalescer can fold them into one
message per pipeline; everything else is a plain :class:`Notification`.
"""

from __future__ import annotations

import logging

from src.gitlab.events import (
    NULL_SHA,
    CIStatus,
    GitLabEvent,
    IssueEvent,
    JobEvent,
    MergeRequestEvent,
    NoteableType,
    NoteEvent,
    PipelineEvent,
    PushEvent,
    TagPushEvent,
    UnknownEvent,
    WikiPageEvent,
)
from src.models import LinkButton, Notification, PipelineUpdate, UpdateSource

logger = logging.getLogger(__name__)

_JOB_EMOJI = {
    CIStatus.RUNNING.value: "⌚",
    CIStatus.CANCELED.value: "🚫",
    CIStatus.FAILED.value: "🗙",
    CIStatus.SUCCESS.value: "✅",
}

_PIPELINE_EMOJI = {
    CIStatus.PENDING.value: "⏸️",
    CIStatus.RUNNING.value: "▶️",
    CIStatus.CANCELED.value: "🚫",
    CIStatus.FAILED.value: "🗙",
    CIStatus.SUCCESS.value: "✅",
}

_OTHER_STATUS_EMOJI = "💼"


def base_ref(ref: str) -> str:
    """Strip the ``refs/<kind>/`` prefix: ``refs/heads/feature/x`` -> ``feature/x``."""
    parts = ref.split("/")
    if len(parts) > 2:
        return "/".join(parts[2:])
    return ref


def format_push(event: PushEvent) -> Notification:
    branch = base_ref(event.ref)
    lines = [f"🛠 {event.user_name} pushed to {event.project.name}#{branch}", ""]
    lines.extend(commit.message.rstrip("\n") for commit in event.commits)

    link: LinkButton | None = None
    # An all-zero "after" means the branch was deleted: nothing to link to.
    if event.after != NULL_SHA:
        if event.before in ("", NULL_SHA) and event.commits:
            url = event.commits[0].url
        else:
            url = (
                f"{event.repository.homepage}/-/compare/"
                f"{event.before[:8]}...{event.after[:8]}"
            )
        link = LinkButton(url=url, label="Changes")

    return Notification(text="\n".join(lines), link=link)


def format_tag_push(event: TagPushEvent) -> Notification:
    tag = base_ref(event.ref)
    if not event.checkout_sha:
        return Notification(text=f"🏷️ remove tag {event.project.name}#{tag}\n\n{event.message}")

    return Notification(
        text=f"🏷️ new tag {event.project.name}#{tag}\n\n{event.message}",
        link=LinkButton(url=f"{event.repository.homepage}/-/tags/{tag}", label="Changes"),
    )


def format_issue(event: IssueEvent) -> Notification:
    attrs = event.object_attributes
    return Notification(
        text=(
            f"🐛 {event.user.name} {attrs.action} issue: {event.project.name}#{attrs.iid}\n"
            f"{attrs.title}\n\n{attrs.description}"
        ),
        link=LinkButton(url=attrs.url, label="Open issue"),
    )


def format_merge_request(event: MergeRequestEvent) -> Notification:
    attrs = event.object_attributes
    return Notification(
        text=(
            f"🔀 {event.user.name} {attrs.action} MR: {event.project.name}#{attrs.iid}\n"
            f"{attrs.title}\n\n{attrs.description}"
        ),
        link=LinkButton(url=attrs.url, label="Open"),
    )


def format_note(event: NoteEvent) -> Notification:
    attrs = event.object_attributes
    project = event.project.name

    if attrs.noteable_type == NoteableType.ISSUE.value:
        preamble = f"commented on issue {project}#{event.issue.iid}"
    elif attrs.noteable_type == NoteableType.COMMIT.value:
        preamble = f"commented on commit {project}#{event.commit.id[:8]}"
    elif attrs.noteable_type == NoteableType.MERGE_REQUEST.value:
        preamble = f"commented on MR {project}#{event.merge_request.iid}"
    elif attrs.noteable_type == NoteableType.SNIPPET.value:
        preamble = f"commented on snippet {project} ${event.snippet.id}"
    else:
        logger.warning("Unknown noteable type %r in note on %s", attrs.noteable_type, project)
        preamble = f"commented on {project}"

    return Notification(
        text=f"💬 {event.user.name} {preamble}\n\n{attrs.note}",
        link=LinkButton(url=attrs.url, label="Open comment"),
    )


def format_wiki_page(event: WikiPageEvent) -> Notification:
    attrs = event.object_attributes
    return Notification(
        text=(
            f"📙 {event.user.name} {attrs.action} page {event.project.name}\n"
            f"{attrs.title}\n\n{attrs.message}"
        ),
        link=LinkButton(url=attrs.url, label="Open page"),
    )


def format_job(event: JobEvent) -> PipelineUpdate | None:
    """Job status line, or None for freshly created jobs."""
    if event.build_status == CIStatus.CREATED.value:
        return None

    emoji = _JOB_EMOJI.get(event.build_status, _OTHER_STATUS_EMOJI)
    return PipelineUpdate(
        pipeline_id=event.pipeline_id,
        status=event.build_status,
        source=UpdateSource.JOB,
        notification=Notification(
            text=f"{emoji} {event.build_stage} {event.build_name} {event.build_status}",
        ),
    )


def format_pipeline(event: PipelineEvent) -> PipelineUpdate:
    attrs = event.object_attributes
    emoji = _PIPELINE_EMOJI.get(attrs.status, _OTHER_STATUS_EMOJI)
    return PipelineUpdate(
        pipeline_id=attrs.id,
        status=attrs.status,
        source=UpdateSource.PIPELINE,
        notification=Notification(
            text=f"{emoji} pipeline #{attrs.id} {attrs.status}",
            link=LinkButton(
                url=f"{event.project.web_url}/pipelines/{attrs.id}",
                label="Open pipeline",
            ),
        ),
    )


def format_unknown(event: UnknownEvent, recipient_id: int) -> Notification:
    logger.warning("Unknown event %r for recipient %d", event.event_type, recipient_id)
    return Notification(text=f"❓ Unknown event {event.event_type}")


def format_event(
    event: GitLabEvent, recipient_id: int,
) -> Notification | PipelineUpdate | None:
    """Map one decoded event to its chat representation.

    Returns None when the event is deliberately not announced.
    """
    if isinstance(event, PushEvent):
        return format_push(event)
    if isinstance(event, TagPushEvent):
        return format_tag_push(event)
    if isinstance(event, IssueEvent):
        return format_issue(event)
    if isinstance(event, NoteEvent):
        return format_note(event)
    if isinstance(event, MergeRequestEvent):
        return format_merge_request(event)
    if isinstance(event, WikiPageEvent):
        return format_wiki_page(event)
    if isinstance(event, JobEvent):
        return format_job(event)
    if isinstance(event, PipelineEvent):
        return format_pipeline(event)
    return format_unknown(event, recipient_id)
