from __future__ import annotations
import uuid
from datetime import datetime
from sqlalchemy import Boolean, Column, String, DateTime, Float, Integer, Text, JSON, UniqueConstraint
from .db import Base


def _new_id() -> str:
	return uuid.uuid4().hex


class User(Base):
	__tablename__ = "users"
	id = Column(String(32), primary_key=True, default=_new_id)
	# Display name; the login identifier is the handle
	username = Column(String(128), nullable=False)
	handle = Column(String(128), unique=True, index=True, nullable=False)
	password_hash = Column(String(256), nullable=False)
	is_admin = Column(Boolean, default=False, nullable=False)
	bio = Column(Text, default="", nullable=False)
	discord_mappings = Column(JSON, nullable=True)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
	last_activity_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	promoted_at = Column(DateTime, nullable=True)
	promoted_by = Column(String(32), nullable=True)
	demoted_at = Column(DateTime, nullable=True)
	demoted_by = Column(String(32), nullable=True)


class AuthSession(Base):
	__tablename__ = "auth_sessions"
	# JWT "jti" claim
	session_id = Column(String(64), primary_key=True)
	user_id = Column(String(32), index=True, nullable=False)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	last_activity_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class Quiz(Base):
	__tablename__ = "quizzes"
	id = Column(String(32), primary_key=True, default=_new_id)
	title = Column(String(256), nullable=False)
	description = Column(Text, default="", nullable=False)
	subject = Column(String(128), nullable=True)
	difficulty = Column(String(128), nullable=True)
	visibility = Column(String(16), default="private", index=True, nullable=False)
	questions = Column(JSON, nullable=False, default=list)
	author = Column(String(128), nullable=True)
	owner_id = Column(String(32), index=True, nullable=True)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class QuizAttempt(Base):
	__tablename__ = "quiz_attempts"
	id = Column(String(32), primary_key=True, default=_new_id)
	user_id = Column(String(32), index=True, nullable=False)
	# Null for attempts on unsaved drafts
	quiz_id = Column(String(32), index=True, nullable=True)
	quiz_title = Column(String(256), nullable=True)
	total_score = Column(Float, default=0, nullable=False)
	max_score = Column(Float, default=0, nullable=False)
	results = Column(JSON, nullable=True)
	ai_error = Column(Boolean, default=False, nullable=False)
	attempted_at = Column(DateTime, default=datetime.utcnow, index=True, nullable=False)


class SystemSettings(Base):
	__tablename__ = "system_settings"
	key = Column(String(32), primary_key=True, default="general")
	allow_registration = Column(Boolean, default=True, nullable=False)
	maintenance_mode = Column(Boolean, default=False, nullable=False)
	registration_message = Column(Text, default="", nullable=False)
	auto_cleanup_enabled = Column(Boolean, default=False, nullable=False)
	updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
	updated_by = Column(String(32), nullable=True)


class Tournament(Base):
	__tablename__ = "tournaments"
	id = Column(String(32), primary_key=True, default=_new_id)
	name = Column(String(256), nullable=False)
	description = Column(Text, default="", nullable=False)
	organizer_id = Column(String(32), nullable=True)
	# upcoming, active, completed, cancelled
	status = Column(String(16), default="upcoming", nullable=False)
	start_date = Column(DateTime, nullable=True)
	end_date = Column(DateTime, nullable=True)
	max_participants = Column(Integer, default=16, nullable=False)
	entry_fee = Column(Integer, default=0, nullable=False)
	prize_pool = Column(JSON, nullable=True)
	rules = Column(JSON, nullable=True)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class TournamentParticipant(Base):
	__tablename__ = "tournament_participants"
	__table_args__ = (UniqueConstraint("tournament_id", "user_id", name="uq_tournament_user"),)
	id = Column(String(32), primary_key=True, default=_new_id)
	tournament_id = Column(String(32), index=True, nullable=False)
	user_id = Column(String(32), index=True, nullable=False)
	# registered, active, eliminated, winner
	status = Column(String(16), default="registered", nullable=False)
	registered_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class Match(Base):
	__tablename__ = "matches"
	id = Column(String(32), primary_key=True, default=_new_id)
	tournament_id = Column(String(32), index=True, nullable=False)
	round = Column(Integer, default=1, nullable=False)
	match_number = Column(Integer, nullable=False)
	participant1_id = Column(String(32), nullable=False)
	participant2_id = Column(String(32), nullable=False)
	winner_id = Column(String(32), nullable=True)
	quiz_id = Column(String(32), nullable=True)
	# scheduled, in_progress, completed, cancelled
	status = Column(String(16), default="scheduled", nullable=False)
	scheduled_at = Column(DateTime, nullable=True)
	started_at = Column(DateTime, nullable=True)
	completed_at = Column(DateTime, nullable=True)
	scores = Column(JSON, nullable=True)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class TeamMember(Base):
	__tablename__ = "team_members"
	id = Column(String(32), primary_key=True, default=_new_id)
	name = Column(String(128), nullable=False)
	discord_id = Column(String(32), unique=True, nullable=False)
	position = Column(String(64), default="", nullable=False)
	is_active = Column(Boolean, default=True, nullable=False)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	created_by = Column(String(32), nullable=True)
	updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
	updated_by = Column(String(32), nullable=True)


class MatchResult(Base):
	__tablename__ = "match_results"
	id = Column(String(32), primary_key=True, default=_new_id)
	match_date = Column(DateTime, index=True, nullable=False)
	opponent = Column(String(128), nullable=False)
	# TeamMember ids
	players = Column(JSON, nullable=False, default=list)
	# win, lose, draw
	result = Column(String(8), nullable=False)
	score = Column(String(64), default="", nullable=False)
	notes = Column(Text, default="", nullable=False)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	created_by = Column(String(32), nullable=True)
