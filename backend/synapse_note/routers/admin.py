from __future__ import annotations
import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..cleanup import delete_quiz_with_attempts, delete_user_with_data, purge_inactive_users
from ..db import get_db
from ..models import Quiz, QuizAttempt, User
from ..system import get_system_settings, settings_to_dict
from .auth import require_admin

router = APIRouter(prefix="/admin", tags=["admin"])

logger = logging.getLogger(__name__)


class SettingsUpdate(BaseModel):
	allowRegistration: Optional[bool] = None
	maintenanceMode: Optional[bool] = None
	registrationMessage: Optional[str] = None
	autoCleanupEnabled: Optional[bool] = None


def _user_row(user: User) -> dict:
	return {
		"uid": user.id,
		"username": user.username,
		"handle": user.handle,
		"isAdmin": bool(user.is_admin),
		"createdAt": user.created_at,
		"lastActivityAt": user.last_activity_at,
	}


def _get_user(db: Session, user_id: str) -> User:
	user = db.get(User, user_id)
	if user is None:
		raise HTTPException(status_code=404, detail="User not found")
	return user


@router.get("/stats")
async def stats(admin: User = Depends(require_admin), db: Session = Depends(get_db)):
	return {
		"totalUsers": db.query(User).count(),
		"totalQuizzes": db.query(Quiz).count(),
		"totalAttempts": db.query(QuizAttempt).count(),
		"adminCount": db.query(User).filter(User.is_admin.is_(True)).count(),
		"settings": settings_to_dict(get_system_settings(db)),
	}


@router.get("/users")
async def list_users(admin: User = Depends(require_admin), db: Session = Depends(get_db)):
	return [_user_row(u) for u in db.query(User).order_by(User.created_at.desc()).all()]


@router.get("/quizzes")
async def list_quizzes(admin: User = Depends(require_admin), db: Session = Depends(get_db)):
	rows = (
		db.query(Quiz, User.username)
		.outerjoin(User, User.id == Quiz.owner_id)
		.order_by(Quiz.created_at.desc())
		.all()
	)
	return [
		{
			"id": quiz.id,
			"title": quiz.title,
			"subject": quiz.subject,
			"visibility": quiz.visibility,
			"questionCount": len(quiz.questions or []),
			"ownerId": quiz.owner_id,
			"creatorName": username or "Unknown",
			"createdAt": quiz.created_at,
		}
		for quiz, username in rows
	]


@router.get("/settings")
async def read_settings(admin: User = Depends(require_admin), db: Session = Depends(get_db)):
	return settings_to_dict(get_system_settings(db))


@router.put("/settings")
async def update_settings(req: SettingsUpdate, admin: User = Depends(require_admin), db: Session = Depends(get_db)):
	row = get_system_settings(db)
	if req.allowRegistration is not None:
		row.allow_registration = req.allowRegistration
	if req.maintenanceMode is not None:
		row.maintenance_mode = req.maintenanceMode
	if req.registrationMessage is not None:
		row.registration_message = req.registrationMessage
	if req.autoCleanupEnabled is not None:
		row.auto_cleanup_enabled = req.autoCleanupEnabled
	row.updated_by = admin.id
	row.updated_at = datetime.utcnow()
	db.merge(row)
	db.commit()
	logger.info("System settings updated by %s", admin.handle)
	return settings_to_dict(get_system_settings(db))


@router.post("/users/{user_id}/promote")
async def promote(user_id: str, admin: User = Depends(require_admin), db: Session = Depends(get_db)):
	user = _get_user(db, user_id)
	user.is_admin = True
	user.promoted_at = datetime.utcnow()
	user.promoted_by = admin.id
	db.commit()
	logger.info("%s promoted %s to admin", admin.handle, user.handle)
	return _user_row(user)


@router.post("/users/{user_id}/demote")
async def demote(user_id: str, admin: User = Depends(require_admin), db: Session = Depends(get_db)):
	if user_id == admin.id:
		raise HTTPException(status_code=400, detail="You cannot demote yourself")
	user = _get_user(db, user_id)
	user.is_admin = False
	user.demoted_at = datetime.utcnow()
	user.demoted_by = admin.id
	db.commit()
	logger.info("%s demoted %s", admin.handle, user.handle)
	return _user_row(user)


@router.delete("/quizzes/{quiz_id}")
async def delete_quiz(quiz_id: str, admin: User = Depends(require_admin), db: Session = Depends(get_db)):
	if db.get(Quiz, quiz_id) is None:
		raise HTTPException(status_code=404, detail="Quiz not found")
	delete_quiz_with_attempts(db, quiz_id)
	db.commit()
	logger.info("%s deleted quiz %s", admin.handle, quiz_id)
	return {"ok": True}


@router.delete("/users/{user_id}")
async def delete_user(user_id: str, admin: User = Depends(require_admin), db: Session = Depends(get_db)):
	if user_id == admin.id:
		raise HTTPException(status_code=400, detail="You cannot delete your own account")
	user = _get_user(db, user_id)
	handle = user.handle
	quiz_count = delete_user_with_data(db, user)
	db.commit()
	logger.info("%s deleted user %s and %d quizzes", admin.handle, handle, quiz_count)
	return {"ok": True, "deletedQuizzes": quiz_count}


@router.post("/cleanup")
async def cleanup(admin: User = Depends(require_admin), db: Session = Depends(get_db)):
	if not get_system_settings(db).auto_cleanup_enabled:
		raise HTTPException(status_code=400, detail="Automatic cleanup is disabled")
	removed = purge_inactive_users(db)
	return {"deletedCount": len(removed), "deletedUsers": removed}
