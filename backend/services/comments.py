"""
UGC Portal - Comments

Append-only, scoped to one workflow entity.
"""

import logging
from typing import Optional

from pymongo.errors import PyMongoError

from config import new_id, now_iso
from models.workflow import Comment, CommentType
from services.errors import AuditLogError

logger = logging.getLogger("comments")


async def add_comment(
    db,
    tenant: str,
    entity_type: str,
    entity_id: str,
    author_id: str,
    body: str,
    comment_type: CommentType = CommentType.COMMENT,
    version_ref: Optional[str] = None,
) -> dict:
    comment = Comment(
        id=new_id(),
        tenant=tenant,
        entity_type=entity_type,
        entity_id=entity_id,
        author_id=author_id,
        body=body.strip(),
        comment_type=comment_type,
        version_ref=version_ref,
        created_at=now_iso(),
    ).model_dump(mode="json")

    try:
        await db.comments.insert_one(dict(comment))
    except PyMongoError as e:
        logger.error(f"[COMMENT_FAILED] {entity_type}/{entity_id}: {e}")
        raise AuditLogError(f"Comment write failed: {e}")

    return comment


async def list_comments(db, tenant: str, entity_type: str, entity_id: str, limit: int = 500):
    """Commentaires d'une entité, du plus ancien au plus récent"""
    query = {"tenant": tenant, "entity_type": entity_type, "entity_id": entity_id}
    return await db.comments.find(query, {"_id": 0}) \
        .sort("created_at", 1) \
        .to_list(limit)
