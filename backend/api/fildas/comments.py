"""Discussion threads on documents.

Anyone who can view a document can read its comments; posting needs at
least contributor access.
"""
from sqlalchemy.orm import Session

from . import activity
from .errors import Forbidden, InvalidInput
from .models import Comment, Document, User
from .permissions import at_least, require_view


def list_comments(db: Session, user: User, doc: Document) -> list[Comment]:
    require_view(db, user, doc)
    return (
        db.query(Comment)
        .filter(Comment.commentable_type == "document", Comment.commentable_id == doc.id)
        .order_by(Comment.created_at.asc(), Comment.id.asc())
        .all()
    )


def add_comment(db: Session, user: User, doc: Document, body: str) -> Comment:
    if not at_least(require_view(db, user, doc), "contributor"):
        raise Forbidden("No permission to comment on this document")
    body = body.strip()
    if not body:
        raise InvalidInput("Comment body must not be empty")

    comment = Comment(
        commentable_type="document",
        commentable_id=doc.id,
        user_id=user.id,
        body=body,
    )
    db.add(comment)
    db.flush()
    activity.record(db, doc, "commented", "Comment added", actor=user)
    db.commit()
    return comment
