from __future__ import annotations
import logging
import re
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..db import get_db
from ..discord import resolve_nicknames_in_text
from ..models import Quiz, QuizAttempt, User
from .auth import get_current_user, get_optional_user

router = APIRouter(prefix="/profile", tags=["profile"])

logger = logging.getLogger(__name__)

MAX_MAPPINGS = 10
_DISCORD_ID = re.compile(r"^[0-9]{17,19}$")


class ProfileUpdate(BaseModel):
	username: str
	bio: Optional[str] = ""


class DiscordMappingIn(BaseModel):
	nickname: str
	discordId: str
	description: Optional[str] = ""


class ResolveRequest(BaseModel):
	text: str


def _stats(db: Session, user_id: str, *, public_only: bool) -> Dict[str, int]:
	quizzes = db.query(Quiz).filter(Quiz.owner_id == user_id)
	if public_only:
		quizzes = quizzes.filter(Quiz.visibility == "public")
	taken, total, maximum = (
		db.query(
			func.count(QuizAttempt.id),
			func.coalesce(func.sum(QuizAttempt.total_score), 0),
			func.coalesce(func.sum(QuizAttempt.max_score), 0),
		)
		.filter(QuizAttempt.user_id == user_id)
		.one()
	)
	return {
		"createdQuizzes": quizzes.count(),
		"takenQuizzes": taken,
		"averageScore": round(total / maximum * 100) if maximum > 0 else 0,
	}


def _profile(user: User) -> Dict[str, Any]:
	return {
		"uid": user.id,
		"username": user.username,
		"handle": user.handle,
		"bio": user.bio or "",
		"isAdmin": bool(user.is_admin),
		"createdAt": user.created_at,
	}


def _clean_mapping(req: DiscordMappingIn) -> Dict[str, str]:
	nickname = req.nickname.strip()
	discord_id = req.discordId.strip()
	description = (req.description or "").strip()
	if not nickname or not discord_id:
		raise HTTPException(status_code=400, detail="Nickname and Discord ID are required")
	if len(nickname) > 30:
		raise HTTPException(status_code=400, detail="Nickname must be 30 characters or fewer")
	if not _DISCORD_ID.match(discord_id):
		raise HTTPException(status_code=400, detail="Discord ID must be 17-19 digits")
	if len(description) > 100:
		raise HTTPException(status_code=400, detail="Description must be 100 characters or fewer")
	return {"nickname": nickname, "discordId": discord_id, "description": description}


def _check_unique(mappings: List[Dict[str, Any]], mapping: Dict[str, str], skip: Optional[int] = None) -> None:
	others = [m for i, m in enumerate(mappings) if i != skip]
	if any(m.get("nickname") == mapping["nickname"] for m in others):
		raise HTTPException(status_code=409, detail="This nickname is already registered")
	if any(m.get("discordId") == mapping["discordId"] for m in others):
		raise HTTPException(status_code=409, detail="This Discord ID is already registered")


def _mapping_index(mappings: List[Dict[str, Any]], index: int) -> int:
	if index < 0 or index >= len(mappings):
		raise HTTPException(status_code=404, detail="Discord mapping not found")
	return index


@router.get("")
async def my_profile(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	return {"user": _profile(user), "stats": _stats(db, user.id, public_only=False), "isOwnProfile": True}


@router.put("")
async def update_profile(req: ProfileUpdate, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	username = req.username.strip()
	bio = (req.bio or "").strip()
	if not username:
		raise HTTPException(status_code=400, detail="Display name is required")
	if len(username) > 50:
		raise HTTPException(status_code=400, detail="Display name must be 50 characters or fewer")
	if len(bio) > 500:
		raise HTTPException(status_code=400, detail="Bio must be 500 characters or fewer")
	user.username = username
	user.bio = bio
	db.commit()
	return _profile(user)


# Registered before "/{handle}" so that "discord" is not taken for a handle
@router.get("/discord")
async def list_mappings(user: User = Depends(get_current_user)):
	return {"mappings": user.discord_mappings or [], "max": MAX_MAPPINGS}


@router.post("/discord", status_code=201)
async def add_mapping(req: DiscordMappingIn, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	mapping = _clean_mapping(req)
	mappings = list(user.discord_mappings or [])
	_check_unique(mappings, mapping)
	if len(mappings) >= MAX_MAPPINGS:
		raise HTTPException(status_code=400, detail=f"At most {MAX_MAPPINGS} Discord mappings can be registered")
	mapping["createdAt"] = datetime.utcnow().isoformat()
	mappings.append(mapping)
	# Reassign so the JSON column is flagged dirty
	user.discord_mappings = mappings
	db.commit()
	logger.info("%s added Discord mapping %s", user.handle, mapping["nickname"])
	return {"mappings": mappings}


@router.put("/discord/{index}")
async def update_mapping(
	index: int,
	req: DiscordMappingIn,
	user: User = Depends(get_current_user),
	db: Session = Depends(get_db),
):
	mappings = list(user.discord_mappings or [])
	_mapping_index(mappings, index)
	mapping = _clean_mapping(req)
	_check_unique(mappings, mapping, skip=index)
	mappings[index] = {**mappings[index], **mapping, "updatedAt": datetime.utcnow().isoformat()}
	user.discord_mappings = mappings
	db.commit()
	return {"mappings": mappings}


@router.delete("/discord/{index}")
async def delete_mapping(index: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	mappings = list(user.discord_mappings or [])
	_mapping_index(mappings, index)
	removed = mappings.pop(index)
	user.discord_mappings = mappings
	db.commit()
	logger.info("%s removed Discord mapping %s", user.handle, removed.get("nickname"))
	return {"mappings": mappings}


@router.post("/discord/resolve")
async def resolve_text(req: ResolveRequest, user: User = Depends(get_current_user)):
	return resolve_nicknames_in_text(req.text, user.discord_mappings or [])


@router.get("/{handle}")
async def profile_by_handle(
	handle: str,
	viewer: Optional[User] = Depends(get_optional_user),
	db: Session = Depends(get_db),
):
	name = handle.strip()
	if not name.startswith("@"):
		name = "@" + name
	user = db.query(User).filter(User.handle == name).first()
	if user is None:
		raise HTTPException(status_code=404, detail="User not found")
	return {
		"user": _profile(user),
		"stats": _stats(db, user.id, public_only=True),
		"isOwnProfile": viewer is not None and viewer.id == user.id,
	}
