"""Story controller: the data-access and rule checks behind the /stories routes.

Route handlers in ``app.py`` stay thin; everything that touches the Story table
goes through here so the duplicate-title and ownership rules live in one place.
"""
import math
from typing import Optional
from fastapi import HTTPException
from sqlalchemy import or_
from sqlalchemy.orm import Session
from logging_config import get_logger
from models import Story, User

logger = get_logger(__name__)

SEARCHABLE_FIELDS = {"title": Story.title, "content": Story.content}
SORTABLE_FIELDS = {
    "id": Story.id,
    "title": Story.title,
    "content": Story.content,
    "read_count": Story.read_count,
    "created_at": Story.created_at,
    "updated_at": Story.updated_at,
}
DEFAULT_LIMIT = 5
MAX_LIMIT = 100

def story_out(s: Story, timestamps: bool = True) -> dict:
    out = {
        "id": s.id,
        "title": s.title,
        "content": s.content,
        "read_count": s.read_count,
        "read_by": s.reader_ids,
        "owner_id": s.owner_id,
    }
    if timestamps:
        out["created_at"] = s.created_at
        out["updated_at"] = s.updated_at
    return out

def find_by_title(session: Session, title: str, exclude_id: Optional[int] = None) -> Optional[Story]:
    q = session.query(Story).filter(Story.title == title)
    if exclude_id is not None:
        q = q.filter(Story.id != exclude_id)
    return q.first()

def ensure_title_free(session: Session, title: str, exclude_id: Optional[int] = None):
    """Raise 422 if another story already uses ``title``."""
    if find_by_title(session, title, exclude_id) is not None:
        raise HTTPException(422, "STORY_ALREADY_EXISTS")

def find_by_id(session: Session, story_id: int) -> Story:
    s = session.query(Story).filter_by(id=story_id).first()
    if not s:
        raise HTTPException(404, "NOT_FOUND")
    return s

def owned_story(session: Session, story_id: int, user: User) -> Story:
    s = find_by_id(session, story_id)
    if s.owner_id != user.id:
        raise HTTPException(403, "NOT_OWNER")
    return s

def list_all(session: Session) -> list:
    rows = session.query(Story).order_by(Story.title.asc()).all()
    return [story_out(s, timestamps=False) for s in rows]

def build_filter(filter: Optional[str], fields: Optional[str]):
    """Turn ?filter=&fields= into a SQL condition (or None when not filtering).

    ``fields`` is a comma separated list of searchable columns; the filter text
    is matched case-insensitively as a substring in any of them.
    """
    if filter is None and fields is None:
        return None
    if not filter or not fields:
        raise HTTPException(422, "ERROR_WITH_FILTER")
    names = [f.strip() for f in fields.split(",") if f.strip()]
    if not names or any(n not in SEARCHABLE_FIELDS for n in names):
        raise HTTPException(422, "ERROR_WITH_FILTER")
    # literal substring: % and _ in the filter text match themselves
    needle = filter.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return or_(*[SEARCHABLE_FIELDS[n].ilike(f"%{needle}%", escape="\\") for n in names])

def list_page(session: Session, filter: Optional[str] = None, fields: Optional[str] = None,
              page: int = 1, limit: int = DEFAULT_LIMIT, sort: str = "created_at", order: int = -1) -> dict:
    cond = build_filter(filter, fields)
    column = SORTABLE_FIELDS.get(sort)
    if column is None or order not in (1, -1):
        raise HTTPException(422, "ERROR_WITH_SORT")
    page = max(1, page)
    limit = max(1, min(limit, MAX_LIMIT))

    q = session.query(Story)
    if cond is not None:
        q = q.filter(cond)
    total = q.count()
    # id breaks ties so pages are stable when the sort key repeats
    ordering = [column.asc(), Story.id.asc()] if order == 1 else [column.desc(), Story.id.desc()]
    rows = q.order_by(*ordering).offset((page - 1) * limit).limit(limit).all()

    total_pages = max(1, math.ceil(total / limit))
    return {
        "docs": [story_out(s) for s in rows],
        "total_docs": total,
        "limit": limit,
        "page": page,
        "total_pages": total_pages,
        "paging_counter": (page - 1) * limit + 1,
        "has_prev_page": page > 1,
        "has_next_page": page < total_pages,
        "prev_page": page - 1 if page > 1 else None,
        "next_page": page + 1 if page < total_pages else None,
    }

def create(session: Session, user: User, title: str, content: str) -> Story:
    ensure_title_free(session, title)
    s = Story(title=title, content=content, owner_id=user.id, read_count=0)
    session.add(s)
    session.commit()
    session.refresh(s)
    logger.info(f"User {user.id} created story {s.id}")
    return s

def read(session: Session, story_id: int, user: User) -> Story:
    """Fetch a story, recording ``user`` as a reader the first time only."""
    s = find_by_id(session, story_id)
    if user not in s.read_by:
        s.read_by.append(user)
        s.read_count += 1
        session.commit()
        session.refresh(s)
    return s

def update(session: Session, story_id: int, user: User, changes: dict) -> Story:
    if changes.get("title") is not None:
        ensure_title_free(session, changes["title"], exclude_id=story_id)
    s = owned_story(session, story_id, user)
    for key in ("title", "content"):
        if changes.get(key) is not None:
            setattr(s, key, changes[key])
    session.commit()
    session.refresh(s)
    return s

def delete(session: Session, story_id: int, user: User):
    s = owned_story(session, story_id, user)
    session.delete(s)
    session.commit()
    logger.info(f"User {user.id} deleted story {story_id}")
