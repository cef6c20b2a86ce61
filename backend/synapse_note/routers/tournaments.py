from __future__ import annotations
import logging
import random
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence, Tuple

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..db import get_db
from ..models import Match, Quiz, Tournament, TournamentParticipant, User
from .auth import get_current_user, require_admin

router = APIRouter(prefix="/tournaments", tags=["tournaments"])

logger = logging.getLogger(__name__)

SCHEDULE_WINDOW = timedelta(days=7)


class TournamentCreate(BaseModel):
	name: str
	description: str = ""
	start_date: Optional[datetime] = None
	end_date: Optional[datetime] = None
	max_participants: int = Field(default=16, ge=2)
	entry_fee: int = Field(default=0, ge=0)


def pair_first_round(
	participant_ids: Sequence[str],
	rng: Optional[random.Random] = None,
) -> Tuple[List[Tuple[str, str]], Optional[str]]:
	"""Shuffle participants and pair neighbours.

	Returns ``(pairs, bye)`` where ``bye`` is the participant left over when
	the count is odd.
	"""
	rng = rng or random.Random()
	shuffled = list(participant_ids)
	rng.shuffle(shuffled)
	bye = shuffled.pop() if len(shuffled) % 2 else None
	pairs = [(shuffled[i], shuffled[i + 1]) for i in range(0, len(shuffled), 2)]
	return pairs, bye


def _tournament_dict(t: Tournament, participant_count: Optional[int] = None) -> Dict[str, Any]:
	data = {
		"id": t.id,
		"name": t.name,
		"description": t.description or "",
		"organizerId": t.organizer_id,
		"status": t.status,
		"startDate": t.start_date,
		"endDate": t.end_date,
		"maxParticipants": t.max_participants,
		"entryFee": t.entry_fee,
		"prizePool": t.prize_pool or {},
		"rules": t.rules or {},
		"createdAt": t.created_at,
	}
	if participant_count is not None:
		data["participantCount"] = participant_count
	return data


def _match_dict(m: Match) -> Dict[str, Any]:
	return {
		"id": m.id,
		"tournamentId": m.tournament_id,
		"round": m.round,
		"matchNumber": m.match_number,
		"participant1Id": m.participant1_id,
		"participant2Id": m.participant2_id,
		"winnerId": m.winner_id,
		"quizId": m.quiz_id,
		"status": m.status,
		"scheduledAt": m.scheduled_at,
		"startedAt": m.started_at,
		"completedAt": m.completed_at,
		"scores": m.scores or {},
	}


def _public_user(user: Optional[User]) -> Optional[Dict[str, Any]]:
	if user is None:
		return None
	return {"uid": user.id, "username": user.username, "handle": user.handle}


def _get_tournament(db: Session, tournament_id: str) -> Tournament:
	t = db.get(Tournament, tournament_id)
	if t is None:
		raise HTTPException(status_code=404, detail="Tournament not found")
	return t


def _get_match(db: Session, match_id: str) -> Match:
	m = db.get(Match, match_id)
	if m is None:
		raise HTTPException(status_code=404, detail="Match not found")
	return m


def _participant_count(db: Session, tournament_id: str) -> int:
	return db.query(TournamentParticipant).filter(TournamentParticipant.tournament_id == tournament_id).count()


@router.get("")
async def list_tournaments(db: Session = Depends(get_db)):
	rows = db.query(Tournament).order_by(Tournament.created_at.desc()).all()
	return [_tournament_dict(t, _participant_count(db, t.id)) for t in rows]


@router.post("", status_code=201)
async def create_tournament(req: TournamentCreate, admin: User = Depends(require_admin), db: Session = Depends(get_db)):
	if not req.name.strip():
		raise HTTPException(status_code=400, detail="name is required")
	t = Tournament(
		name=req.name.strip(),
		description=req.description,
		organizer_id=admin.id,
		status="upcoming",
		start_date=req.start_date,
		end_date=req.end_date,
		max_participants=req.max_participants,
		entry_fee=req.entry_fee,
		prize_pool={"first": "Winner", "second": "Runner-up", "third": "Third place"},
		rules={"format": "single_elimination", "timeLimit": 300},
	)
	db.add(t)
	db.commit()
	db.refresh(t)
	logger.info("%s created tournament %s", admin.handle, t.id)
	return _tournament_dict(t, 0)


@router.get("/matches/{match_id}")
async def match_detail(match_id: str, db: Session = Depends(get_db)):
	m = _get_match(db, match_id)
	quiz = db.get(Quiz, m.quiz_id) if m.quiz_id else None
	return {
		"match": _match_dict(m),
		"participant1": _public_user(db.get(User, m.participant1_id)),
		"participant2": _public_user(db.get(User, m.participant2_id)),
		"quiz": {"id": quiz.id, "title": quiz.title, "subject": quiz.subject, "questionCount": len(quiz.questions or [])} if quiz else None,
	}


@router.post("/matches/{match_id}/start")
async def start_match(match_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	m = _get_match(db, match_id)
	if user.id not in (m.participant1_id, m.participant2_id):
		raise HTTPException(status_code=403, detail="Only participants can start this match")
	if m.status != "scheduled":
		raise HTTPException(status_code=400, detail="This match has already started or finished")
	m.status = "in_progress"
	m.started_at = datetime.utcnow()
	db.commit()
	return {"ok": True, "match": _match_dict(m)}


@router.get("/{tournament_id}")
async def tournament_detail(tournament_id: str, db: Session = Depends(get_db)):
	t = _get_tournament(db, tournament_id)
	participants = (
		db.query(TournamentParticipant, User)
		.outerjoin(User, User.id == TournamentParticipant.user_id)
		.filter(TournamentParticipant.tournament_id == t.id)
		.order_by(TournamentParticipant.registered_at.asc())
		.all()
	)
	matches = (
		db.query(Match)
		.filter(Match.tournament_id == t.id)
		.order_by(Match.round.asc(), Match.match_number.asc())
		.all()
	)
	return {
		"tournament": _tournament_dict(t, len(participants)),
		"participants": [
			{"userId": p.user_id, "status": p.status, "registeredAt": p.registered_at, "user": _public_user(u)}
			for p, u in participants
		],
		"matches": [_match_dict(m) for m in matches],
	}


@router.post("/{tournament_id}/join")
async def join_tournament(tournament_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	t = _get_tournament(db, tournament_id)
	if t.status != "upcoming":
		raise HTTPException(status_code=400, detail="Registration for this tournament is closed")
	existing = (
		db.query(TournamentParticipant)
		.filter(TournamentParticipant.tournament_id == t.id, TournamentParticipant.user_id == user.id)
		.first()
	)
	if existing is not None:
		raise HTTPException(status_code=400, detail="You have already joined this tournament")
	if _participant_count(db, t.id) >= t.max_participants:
		raise HTTPException(status_code=400, detail="This tournament is full")
	db.add(TournamentParticipant(tournament_id=t.id, user_id=user.id, status="registered"))
	try:
		db.commit()
	except IntegrityError:
		db.rollback()
		raise HTTPException(status_code=400, detail="You have already joined this tournament")
	return {"ok": True, "message": "Joined the tournament"}


def generate_first_round(
	db: Session,
	t: Tournament,
	*,
	rng: Optional[random.Random] = None,
	now: Optional[datetime] = None,
) -> Tuple[List[Match], Optional[str]]:
	"""Stage round-one matches for every registered participant. The caller commits."""
	rng = rng or random.Random()
	now = now or datetime.utcnow()
	registered = (
		db.query(TournamentParticipant)
		.filter(TournamentParticipant.tournament_id == t.id, TournamentParticipant.status == "registered")
		.order_by(TournamentParticipant.registered_at.asc())
		.all()
	)
	if len(registered) < 2:
		raise HTTPException(status_code=400, detail="At least two participants are needed to start")
	quiz_ids = [row.id for row in db.query(Quiz.id).filter(Quiz.visibility == "public").all()]
	pairs, bye = pair_first_round([p.user_id for p in registered], rng)
	matches: List[Match] = []
	for number, (first, second) in enumerate(pairs, start=1):
		m = Match(
			tournament_id=t.id,
			round=1,
			match_number=number,
			participant1_id=first,
			participant2_id=second,
			quiz_id=rng.choice(quiz_ids) if quiz_ids else None,
			status="scheduled",
			scheduled_at=now + rng.random() * SCHEDULE_WINDOW,
			scores={},
		)
		db.add(m)
		matches.append(m)
	for p in registered:
		p.status = "active"
	return matches, bye


@router.post("/{tournament_id}/start")
async def start_tournament(tournament_id: str, admin: User = Depends(require_admin), db: Session = Depends(get_db)):
	t = _get_tournament(db, tournament_id)
	if t.status != "upcoming":
		raise HTTPException(status_code=400, detail="Only upcoming tournaments can be started")
	matches, bye = generate_first_round(db, t)
	t.status = "active"
	db.commit()
	logger.info("%s started tournament %s with %d matches", admin.handle, t.id, len(matches))
	return {"ok": True, "matches": [_match_dict(m) for m in matches], "bye": bye}
