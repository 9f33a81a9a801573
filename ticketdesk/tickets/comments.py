from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from typing import Iterable, Sequence

from .errors import CommentNotFoundError, TicketValidationError
from .models import Attachment, Comment, UserType


def build_comment(
    *,
    ticket_id: str,
    author: str,
    content: str,
    user_type: UserType,
    now: datetime,
    parent: Comment | None = None,
    attachments: Sequence[Attachment] = (),
) -> Comment:
    """Validate and construct a new comment.

    Replies to a reply are attached to that reply's top-level comment, so the
    thread never grows deeper than one level.
    """

    author = (author or "").strip()
    content = (content or "").strip()
    if not author:
        raise TicketValidationError("Comment author is required")
    if not content and not attachments:
        raise TicketValidationError("A comment needs content or at least one attachment")

    parent_id: int | None = None
    if parent is not None:
        if parent.ticket_id != ticket_id or parent.id is None:
            raise CommentNotFoundError(f"Comment {parent.id} not found on ticket {ticket_id}")
        parent_id = parent.parent_id if parent.parent_id is not None else parent.id

    return Comment(
        ticket_id=ticket_id,
        author=author,
        content=content,
        user_type=user_type,
        created_at=now,
        parent_id=parent_id,
        attachments=tuple(attachments),
    )


def thread_comments(comments: Iterable[Comment]) -> list[Comment]:
    """Arrange flat comments into threads.

    Top-level comments come newest first; replies sit under their parent
    oldest first. Replies whose parent is missing are dropped.
    """

    flat = list(comments)
    top_level = [replace(comment, replies=[]) for comment in flat if comment.parent_id is None]
    by_id = {comment.id: comment for comment in top_level}
    for reply in flat:
        if reply.parent_id is None:
            continue
        parent = by_id.get(reply.parent_id)
        if parent is not None:
            parent.replies.append(replace(reply, replies=[]))

    for comment in top_level:
        comment.replies.sort(key=lambda item: (item.created_at, item.id or 0))
    top_level.sort(key=lambda item: (item.created_at, item.id or 0), reverse=True)
    return top_level


def is_visible(comment: Comment, viewer: UserType) -> bool:
    if viewer == UserType.INTERNAL:
        return True
    return comment.user_type == UserType.EXTERNAL


def visible_comments(threads: Iterable[Comment], viewer: UserType) -> list[Comment]:
    """Filter threaded comments for ``viewer``; replies are checked on their own."""

    visible: list[Comment] = []
    for comment in threads:
        if not is_visible(comment, viewer):
            continue
        replies = [reply for reply in comment.replies if is_visible(reply, viewer)]
        visible.append(replace(comment, replies=replies))
    return visible
