from __future__ import annotations

from typing import Dict, Optional, Sequence

from .models import CommentRecord


def link_replies(comments: Sequence[CommentRecord], current_user_name: Optional[str] = None) -> None:
    """
    Link each comment to the one it replies to: the nearest preceding comment
    one level up within the same section. A comment placed after an outdent
    marker replies to the comment right before it in its section. Comments are
    expected in document order with sections already bound.
    """
    last_at_level: Dict[int, CommentRecord] = {}
    current_section = object()
    previous: Optional[CommentRecord] = None
    by_id = {comment.id: comment for comment in comments}

    for comment in comments:
        comment.own = bool(current_user_name) and comment.author_name == current_user_name
        if comment.section_id != current_section:
            last_at_level.clear()
            current_section = comment.section_id
            previous = None

        for level in [level for level in last_at_level if level > comment.level]:
            del last_at_level[level]

        parent = last_at_level.get(comment.level - 1) if comment.level > 0 else None
        if parent is None and comment.follows_outdent:
            parent = previous
        comment.parent_comment_id = parent.id if parent else None
        last_at_level[comment.level] = comment
        previous = comment

    for comment in comments:
        if comment.parent_comment_id is None:
            comment.target_author_name = None
            comment.to_me = False
            continue
        target = by_id[comment.parent_comment_id]
        comment.target_author_name = target.author_name
        comment.to_me = target.own
