from __future__ import annotations
import logging
from datetime import datetime
from typing import Any, Dict, List, Literal

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..db import get_db
from ..models import MatchResult, TeamMember, User
from .auth import get_current_user, require_admin

router = APIRouter(prefix="/matches", tags=["team_matches"])

logger = logging.getLogger(__name__)

RECENT_RESULTS = 20


class MemberIn(BaseModel):
	name: str
	discordId: str
	position: str = ""
	isActive: bool = True


class MatchResultIn(BaseModel):
	matchDate: datetime
	opponent: str
	players: List[str]
	result: Literal["win", "lose", "draw"]
	score: str = ""
	notes: str = ""


def _member_dict(m: TeamMember) -> Dict[str, Any]:
	return {
		"id": m.id,
		"name": m.name,
		"discordId": m.discord_id,
		"position": m.position or "",
		"isActive": bool(m.is_active),
	}


def _clean_member(req: MemberIn) -> MemberIn:
	name = req.name.strip()
	discord_id = req.discordId.strip()
	if not name or not discord_id:
		raise HTTPException(status_code=400, detail="Name and Discord ID are required")
	return MemberIn(name=name, discordId=discord_id, position=req.position.strip(), isActive=req.isActive)


def _get_member(db: Session, member_id: str) -> TeamMember:
	m = db.get(TeamMember, member_id)
	if m is None:
		raise HTTPException(status_code=404, detail="Team member not found")
	return m


# ---- Roster ----

@router.get("/members")
async def list_members(admin: User = Depends(require_admin), db: Session = Depends(get_db)):
	return [_member_dict(m) for m in db.query(TeamMember).order_by(TeamMember.name.asc()).all()]


@router.post("/members", status_code=201)
async def add_member(req: MemberIn, admin: User = Depends(require_admin), db: Session = Depends(get_db)):
	req = _clean_member(req)
	if db.query(TeamMember).filter(TeamMember.discord_id == req.discordId).first():
		raise HTTPException(status_code=409, detail="This Discord ID is already registered")
	m = TeamMember(
		name=req.name,
		discord_id=req.discordId,
		position=req.position,
		is_active=req.isActive,
		created_by=admin.id,
	)
	db.add(m)
	db.commit()
	db.refresh(m)
	return _member_dict(m)


@router.put("/members/{member_id}")
async def update_member(member_id: str, req: MemberIn, admin: User = Depends(require_admin), db: Session = Depends(get_db)):
	m = _get_member(db, member_id)
	req = _clean_member(req)
	clash = db.query(TeamMember).filter(TeamMember.discord_id == req.discordId, TeamMember.id != m.id).first()
	if clash is not None:
		raise HTTPException(status_code=409, detail="This Discord ID is already used by another member")
	m.name = req.name
	m.discord_id = req.discordId
	m.position = req.position
	m.is_active = req.isActive
	m.updated_by = admin.id
	db.commit()
	return _member_dict(m)


@router.delete("/members/{member_id}")
async def delete_member(member_id: str, admin: User = Depends(require_admin), db: Session = Depends(get_db)):
	m = _get_member(db, member_id)
	if any(member_id in (r.players or []) for r in db.query(MatchResult).all()):
		raise HTTPException(status_code=400, detail="This member appears in match results and cannot be deleted")
	name = m.name
	db.delete(m)
	db.commit()
	logger.info("%s removed team member %s", admin.handle, name)
	return {"ok": True}


@router.get("/api/members")
async def active_members(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	rows = db.query(TeamMember).filter(TeamMember.is_active.is_(True)).order_by(TeamMember.name.asc()).all()
	return [{"id": m.id, "name": m.name, "discordId": m.discord_id, "position": m.position or ""} for m in rows]


# ---- Results ----

@router.get("")
async def list_results(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	rows = db.query(MatchResult).order_by(MatchResult.match_date.desc()).limit(RECENT_RESULTS).all()
	player_ids = {pid for r in rows for pid in (r.players or [])}
	names = {}
	if player_ids:
		names = {m.id: m.name for m in db.query(TeamMember).filter(TeamMember.id.in_(player_ids)).all()}
	return [
		{
			"id": r.id,
			"matchDate": r.match_date,
			"opponent": r.opponent,
			"players": r.players or [],
			"playerNames": [names.get(pid, "Unknown player") for pid in (r.players or [])],
			"result": r.result,
			"score": r.score or "",
			"notes": r.notes or "",
		}
		for r in rows
	]


@router.post("", status_code=201)
async def create_result(req: MatchResultIn, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	opponent = req.opponent.strip()
	players = [p for p in req.players if p]
	if not opponent or not players:
		raise HTTPException(status_code=400, detail="Match date, opponent, players and result are required")
	r = MatchResult(
		match_date=req.matchDate,
		opponent=opponent,
		players=players,
		result=req.result,
		score=req.score.strip(),
		notes=req.notes.strip(),
		created_by=user.id,
	)
	db.add(r)
	db.commit()
	db.refresh(r)
	return {"id": r.id, "matchDate": r.match_date, "opponent": r.opponent, "players": r.players, "result": r.result}
