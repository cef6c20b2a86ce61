"""Paginated read APIs for the quiz browser.

Listing queries from anonymous visitors are the hot path, so their responses
are kept in a short-lived in-memory cache keyed by every query parameter.
"""

from __future__ import annotations
import logging
import math
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import or_
from sqlalchemy.orm import Session

from ..cache import TTLCache
from ..db import get_db
from ..models import Quiz, QuizAttempt, User
from ..responses import ApiError, envelope
from ..settings import settings
from .auth import get_optional_user

router = APIRouter(prefix="/api/fastserver", tags=["fastserver"])

logger = logging.getLogger(__name__)

quiz_cache = TTLCache(ttl_seconds=settings.fastserver_cache_ttl_seconds)

SEARCH_SCAN_LIMIT = 500
USER_SCAN_LIMIT = 200
_SORT_COLUMNS = {"createdAt": Quiz.created_at, "title": Quiz.title, "updatedAt": Quiz.updated_at}
_OPEN = ("public", "unlisted")


def _iso(value: Optional[datetime]) -> Optional[str]:
	return value.isoformat() if value else None


def _clamp(value: int, low: int, high: int) -> int:
	return min(high, max(low, value))


def _require_user(user: Optional[User]) -> User:
	if user is None:
		raise ApiError(401, "Authentication required")
	return user


def _normalize_visibility(visibility: str, user: Optional[User]) -> str:
	# Anonymous visitors never see private quizzes
	allowed = _OPEN + ("all",) if user is None else _OPEN + ("private", "all")
	return visibility if visibility in allowed else "public"


def _visibility_filter(query, visibility: str, user: Optional[User]):
	if visibility == "all":
		if user is None:
			return query.filter(Quiz.visibility.in_(_OPEN))
		return query.filter(or_(Quiz.visibility.in_(_OPEN), Quiz.owner_id == user.id))
	if visibility == "private":
		return query.filter(Quiz.visibility == "private", Quiz.owner_id == user.id)
	return query.filter(Quiz.visibility == visibility)


def _matches(quiz: Quiz, needle: str) -> bool:
	return any(needle in (field or "").lower() for field in (quiz.title, quiz.description, quiz.subject))


def _quiz_item(quiz: Quiz) -> Dict[str, Any]:
	return {
		"id": quiz.id,
		"title": quiz.title,
		"description": quiz.description or "",
		"subject": quiz.subject or "Other",
		"difficulty": quiz.difficulty or "Medium",
		"visibility": quiz.visibility,
		"questionCount": len(quiz.questions or []),
		"createdAt": _iso(quiz.created_at),
		"updatedAt": _iso(quiz.updated_at),
		"ownerId": quiz.owner_id,
	}


def _attach_owners(db: Session, items: List[Dict[str, Any]]) -> None:
	owner_ids = {item["ownerId"] for item in items if item["ownerId"]}
	if not owner_ids:
		return
	owners = {u.id: u for u in db.query(User).filter(User.id.in_(owner_ids)).all()}
	for item in items:
		owner = owners.get(item["ownerId"])
		if owner is not None:
			item["owner"] = {"handle": owner.handle, "username": owner.username}


@router.get("/quizzes")
async def list_quizzes(
	page: int = 1,
	limit: int = 20,
	search: str = "",
	visibility: str = "public",
	subject: str = "",
	sort_by: str = Query("createdAt", alias="sortBy"),
	sort_order: str = Query("desc", alias="sortOrder"),
	include_owner: bool = Query(False, alias="includeOwner"),
	user: Optional[User] = Depends(get_optional_user),
	db: Session = Depends(get_db),
):
	page = max(1, page)
	limit = _clamp(limit, 1, 100)
	search = search.strip()
	subject = subject.strip()
	visibility = _normalize_visibility(visibility.strip(), user)
	if sort_by not in _SORT_COLUMNS:
		sort_by = "createdAt"
	if sort_order not in ("asc", "desc"):
		sort_order = "desc"

	cacheable = not search and user is None
	cache_key = f"quizzes:{page}:{limit}:{search}:{visibility}:{subject}:{sort_by}:{sort_order}:{include_owner}"
	if cacheable:
		cached = quiz_cache.get(cache_key)
		if cached is not None:
			return cached

	query = _visibility_filter(db.query(Quiz), visibility, user)
	if subject:
		query = query.filter(Quiz.subject == subject)
	column = _SORT_COLUMNS[sort_by]
	query = query.order_by(column.asc() if sort_order == "asc" else column.desc())

	offset = (page - 1) * limit
	if search:
		needle = search.lower()
		found = [q for q in query.limit(SEARCH_SCAN_LIMIT).all() if _matches(q, needle)]
		quizzes = found[offset:offset + limit]
		total_count = None
		has_more = len(quizzes) == limit
	else:
		total_count = query.count()
		quizzes = query.offset(offset).limit(limit).all()
		has_more = page * limit < total_count

	items = [_quiz_item(q) for q in quizzes]
	if include_owner:
		_attach_owners(db, items)

	result = envelope({
		"quizzes": items,
		"pagination": {
			"page": page,
			"limit": limit,
			"totalCount": total_count,
			"hasMore": has_more,
			"totalPages": math.ceil(total_count / limit) if total_count else None,
		},
		"filters": {
			"search": search,
			"visibility": visibility,
			"subject": subject,
			"sortBy": sort_by,
			"sortOrder": sort_order,
		},
	})
	if cacheable:
		quiz_cache.set(cache_key, result)
	return result


@router.get("/users")
async def list_users(
	page: int = 1,
	limit: int = 20,
	search: str = "",
	user: Optional[User] = Depends(get_optional_user),
	db: Session = Depends(get_db),
):
	_require_user(user)
	page = max(1, page)
	limit = _clamp(limit, 1, 50)
	search = search.strip()
	offset = (page - 1) * limit
	query = db.query(User).order_by(User.created_at.desc())
	if search:
		needle = search.lower()
		rows = [
			u for u in query.limit(USER_SCAN_LIMIT).all()
			if needle in (u.username or "").lower() or needle in (u.handle or "").lower()
		]
		rows = rows[offset:offset + limit]
	else:
		rows = query.offset(offset).limit(limit).all()
	users = [
		{"uid": u.id, "username": u.username, "handle": u.handle, "createdAt": _iso(u.created_at)}
		for u in rows
	]
	return envelope({
		"users": users,
		"pagination": {"page": page, "limit": limit, "hasMore": len(users) == limit},
		"filters": {"search": search},
	})


@router.get("/history")
async def history(
	page: int = 1,
	limit: int = 20,
	quiz_id: str = Query("", alias="quizId"),
	user: Optional[User] = Depends(get_optional_user),
	db: Session = Depends(get_db),
):
	user = _require_user(user)
	page = max(1, page)
	limit = _clamp(limit, 1, 100)
	quiz_id = quiz_id.strip()
	query = db.query(QuizAttempt).filter(QuizAttempt.user_id == user.id)
	if quiz_id:
		query = query.filter(QuizAttempt.quiz_id == quiz_id)
	rows = query.order_by(QuizAttempt.attempted_at.desc()).offset((page - 1) * limit).limit(limit).all()
	entries = []
	for a in rows:
		total = a.total_score or 0
		maximum = a.max_score or 0
		entries.append({
			"id": a.id,
			"quizId": a.quiz_id,
			"quizTitle": a.quiz_title or "Unknown Quiz",
			"totalScore": total,
			"maxScore": maximum,
			"percentage": round(total / maximum * 100) if maximum > 0 else 0,
			"attemptedAt": _iso(a.attempted_at),
		})
	return envelope({
		"history": entries,
		"pagination": {"page": page, "limit": limit, "hasMore": len(entries) == limit},
		"filters": {"quizId": quiz_id},
	})


@router.delete("/cache")
async def clear_cache(user: Optional[User] = Depends(get_optional_user)):
	user = _require_user(user)
	if not user.is_admin:
		raise ApiError(403, "Administrator access required")
	size = len(quiz_cache)
	quiz_cache.clear()
	logger.info("%s cleared %d cached listings", user.handle, size)
	return envelope({"message": "Cache cleared successfully"})
