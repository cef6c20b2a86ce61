from __future__ import annotations
import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional
from sqlalchemy import delete
from sqlalchemy.orm import Session

from .models import AuthSession, Quiz, QuizAttempt, User
from .settings import settings

logger = logging.getLogger(__name__)


def delete_quiz_with_attempts(db: Session, quiz_id: str) -> None:
	db.execute(delete(QuizAttempt).where(QuizAttempt.quiz_id == quiz_id))
	db.execute(delete(Quiz).where(Quiz.id == quiz_id))


def delete_user_with_data(db: Session, user: User) -> int:
	"""Stage deletion of a user, their quizzes (and attempts on them), their own attempts and sessions.

	Returns the number of quizzes removed. The caller commits.
	"""
	quiz_ids = [q.id for q in db.query(Quiz.id).filter(Quiz.owner_id == user.id).all()]
	for quiz_id in quiz_ids:
		delete_quiz_with_attempts(db, quiz_id)
	db.execute(delete(QuizAttempt).where(QuizAttempt.user_id == user.id))
	db.execute(delete(AuthSession).where(AuthSession.user_id == user.id))
	db.delete(user)
	return len(quiz_ids)


def purge_inactive_users(db: Session, *, now: Optional[datetime] = None) -> List[Dict[str, object]]:
	now = now or datetime.utcnow()
	inactive_before = now - timedelta(days=settings.cleanup_inactive_days)
	recent_after = now - timedelta(days=settings.cleanup_recent_attempt_days)
	removed: List[Dict[str, object]] = []

	candidates = db.query(User).filter(User.last_activity_at <= inactive_before, User.is_admin.is_(False)).all()
	for user in candidates:
		# Keep authors whose quizzes are still being played
		recently_played = (
			db.query(QuizAttempt.id)
			.join(Quiz, Quiz.id == QuizAttempt.quiz_id)
			.filter(Quiz.owner_id == user.id, QuizAttempt.attempted_at > recent_after)
			.first()
		)
		if recently_played is not None:
			continue
		entry = {"username": user.username, "handle": user.handle}
		entry["quizCount"] = delete_user_with_data(db, user)
		db.commit()
		removed.append(entry)
		logger.info("Removed inactive user %s with %d quizzes", entry["handle"], entry["quizCount"])
	return removed

