from __future__ import annotations
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends
from sqlalchemy.orm import Session

from ..apps_script import AppsScriptClient, AppsScriptError
from ..db import get_db
from ..models import Quiz, QuizAttempt, User
from ..responses import ApiError, envelope, now_iso
from ..settings import settings
from .auth import get_optional_user

router = APIRouter(prefix="/api", tags=["api"])

logger = logging.getLogger(__name__)

LOCAL_SOURCE = "local-database"


async def get_apps_script_client():
	"""Yield an Apps Script client, or None when the integration is switched off."""
	if not settings.apps_script_enabled:
		yield None
		return
	client = AppsScriptClient()
	try:
		yield client
	finally:
		await client.aclose()


def _signed_in(user: Optional[User]) -> User:
	if user is None:
		raise ApiError(401, "Authentication required")
	return user


def _require_script(client: Optional[AppsScriptClient]) -> AppsScriptClient:
	if client is None:
		raise ApiError(503, "Google Apps Script is not configured")
	return client


def _iso(value) -> Optional[str]:
	return value.isoformat() if value else None


# ---- Public statistics ----

@router.get("/public/stats")
async def public_stats(
	db: Session = Depends(get_db),
	script: Optional[AppsScriptClient] = Depends(get_apps_script_client),
):
	if script is not None:
		try:
			return await script.get_system_stats()
		except AppsScriptError as err:
			logger.warning("Apps Script stats failed, falling back to local database: %s", err)
	total_quizzes = db.query(Quiz).count()
	by_visibility = {
		visibility: db.query(Quiz).filter(Quiz.visibility == visibility).count()
		for visibility in ("public", "unlisted", "private")
	}
	return envelope(
		{
			"totalUsers": db.query(User).count(),
			"totalQuizzes": total_quizzes,
			"totalAttempts": db.query(QuizAttempt).count(),
			"adminCount": db.query(User).filter(User.is_admin.is_(True)).count(),
			"quizzesByVisibility": by_visibility,
			"generatedAt": now_iso(),
		},
		source=LOCAL_SOURCE,
	)


@router.get("/public/users/count")
async def public_user_count(
	db: Session = Depends(get_db),
	script: Optional[AppsScriptClient] = Depends(get_apps_script_client),
):
	if script is not None:
		try:
			return await script.get_user_count()
		except AppsScriptError as err:
			logger.warning("Apps Script user count failed, falling back to local database: %s", err)
	return envelope({"count": db.query(User).count(), "generatedAt": now_iso()}, source=LOCAL_SOURCE)


@router.get("/public/quizzes/count")
async def public_quiz_count(
	db: Session = Depends(get_db),
	script: Optional[AppsScriptClient] = Depends(get_apps_script_client),
):
	if script is not None:
		try:
			return await script.get_quiz_count()
		except AppsScriptError as err:
			logger.warning("Apps Script quiz count failed, falling back to local database: %s", err)
	return envelope({"count": db.query(Quiz).count(), "generatedAt": now_iso()}, source=LOCAL_SOURCE)


# ---- Google Apps Script passthrough ----

@router.get("/gas/ping")
async def gas_ping(script: Optional[AppsScriptClient] = Depends(get_apps_script_client)):
	script = _require_script(script)
	connected = await script.test_connection()
	return envelope({"connected": connected, "scriptUrl": script.script_url, "testedAt": now_iso()})


@router.post("/gas/action")
async def gas_action(
	body: Optional[Dict[str, Any]] = Body(None),
	script: Optional[AppsScriptClient] = Depends(get_apps_script_client),
):
	body = body or {}
	action = body.get("action")
	if not action:
		raise ApiError(400, "Action parameter is required")
	script = _require_script(script)
	logger.info("Sending action %r to Google Apps Script", action)
	try:
		return await script.perform_action(action, body.get("data"))
	except AppsScriptError as err:
		raise ApiError(502, f"Failed to perform Google Apps Script action: {err}")


def _submission(user: User, body: Optional[Dict[str, Any]]) -> Dict[str, Any]:
	return {
		"userId": user.id,
		"username": user.username,
		"submittedAt": now_iso(),
		"data": (body or {}).get("data") or {},
	}


@router.post("/gas/submit-user-data")
async def gas_submit_user_data(
	body: Optional[Dict[str, Any]] = Body(None),
	user: Optional[User] = Depends(get_optional_user),
	script: Optional[AppsScriptClient] = Depends(get_apps_script_client),
):
	user = _signed_in(user)
	script = _require_script(script)
	try:
		return await script.submit_user_data(_submission(user, body))
	except AppsScriptError as err:
		raise ApiError(502, f"Failed to submit user data to Google Apps Script: {err}")


@router.post("/gas/submit-quiz-data")
async def gas_submit_quiz_data(
	body: Optional[Dict[str, Any]] = Body(None),
	user: Optional[User] = Depends(get_optional_user),
	script: Optional[AppsScriptClient] = Depends(get_apps_script_client),
):
	user = _signed_in(user)
	script = _require_script(script)
	try:
		return await script.submit_quiz_data(_submission(user, body))
	except AppsScriptError as err:
		raise ApiError(502, f"Failed to submit quiz data to Google Apps Script: {err}")


# ---- Signed-in user ----

@router.get("/user/profile")
async def user_profile(user: Optional[User] = Depends(get_optional_user)):
	user = _signed_in(user)
	return envelope({
		"uid": user.id,
		"username": user.username,
		"handle": user.handle,
		"isAdmin": bool(user.is_admin),
		"createdAt": _iso(user.created_at),
		"lastActivityAt": _iso(user.last_activity_at),
	})


@router.get("/user/quizzes")
async def user_quizzes(user: Optional[User] = Depends(get_optional_user), db: Session = Depends(get_db)):
	user = _signed_in(user)
	rows = db.query(Quiz).filter(Quiz.owner_id == user.id).order_by(Quiz.created_at.desc()).all()
	quizzes = [
		{
			"id": q.id,
			"title": q.title,
			"description": q.description or "",
			"visibility": q.visibility,
			"questionCount": len(q.questions or []),
			"createdAt": _iso(q.created_at),
			"updatedAt": _iso(q.updated_at),
		}
		for q in rows
	]
	return envelope({"quizzes": quizzes, "totalCount": len(quizzes)})


@router.get("/user/history")
async def user_history(user: Optional[User] = Depends(get_optional_user), db: Session = Depends(get_db)):
	user = _signed_in(user)
	rows = (
		db.query(QuizAttempt)
		.filter(QuizAttempt.user_id == user.id)
		.order_by(QuizAttempt.attempted_at.desc())
		.limit(50)
		.all()
	)
	history = [
		{
			"id": a.id,
			"quizId": a.quiz_id,
			"quizTitle": a.quiz_title or "Unknown Quiz",
			"totalScore": a.total_score,
			"maxScore": a.max_score,
			"questionCount": len(a.results or []),
			"attemptedAt": _iso(a.attempted_at),
		}
		for a in rows
	]
	return envelope({"history": history, "totalCount": len(history)})


@router.get("/user/stats")
async def user_stats(user: Optional[User] = Depends(get_optional_user), db: Session = Depends(get_db)):
	user = _signed_in(user)
	created = db.query(Quiz).filter(Quiz.owner_id == user.id).count()
	public = db.query(Quiz).filter(Quiz.owner_id == user.id, Quiz.visibility == "public").count()
	attempts = db.query(QuizAttempt).filter(QuizAttempt.user_id == user.id).all()
	percentages = [a.total_score / a.max_score * 100 for a in attempts if a.max_score]
	average = sum(percentages) / len(percentages) if percentages else 0
	return envelope({
		"quizzesCreated": created,
		"publicQuizzes": public,
		"privateQuizzes": created - public,
		"totalAttempts": len(attempts),
		"averageScore": round(average, 2),
		"generatedAt": now_iso(),
	})


@router.get("/docs")
async def api_docs():
	return {
		"title": "Synapse Note API",
		"version": "1.0.0",
		"endpoints": {
			"public": {
				"GET /api/public/stats": "System-wide statistics",
				"GET /api/public/users/count": "Registered user count",
				"GET /api/public/quizzes/count": "Total quiz count",
			},
			"authenticated": {
				"GET /api/user/profile": "Current user's profile",
				"GET /api/user/quizzes": "Quizzes created by the current user",
				"GET /api/user/history": "Current user's 50 most recent attempts",
				"GET /api/user/stats": "Current user's statistics",
			},
			"googleAppsScript": {
				"GET /api/gas/ping": "Test the Apps Script connection",
				"POST /api/gas/action": "Forward an action to Apps Script",
				"POST /api/gas/submit-user-data": "Submit user data to Apps Script",
				"POST /api/gas/submit-quiz-data": "Submit quiz data to Apps Script",
			},
		},
		"response_format": {"success": True, "data": {}, "timestamp": "ISO 8601 timestamp"},
		"error_format": {"success": False, "error": "Error message", "timestamp": "ISO 8601 timestamp"},
	}
