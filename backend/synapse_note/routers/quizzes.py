from __future__ import annotations
import logging
from io import BytesIO
from typing import Any, Dict, List, Optional, Union

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from PIL import Image, UnidentifiedImageError
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..db import get_db
from ..discord import enhance_prompt_with_discord_context, resolve_nicknames_in_text
from ..gemini_client import GeminiClient, GeminiError, image_part
from ..models import Quiz, QuizAttempt, User
from ..quiz_ai import (
	DEFAULT_POINTS,
	QuizGenerationError,
	clean_questions,
	generate_quiz_from_images,
	generate_quiz_from_text,
	grade_answers,
	normalize_answers,
	summarize_results,
)
from ..cleanup import delete_quiz_with_attempts
from ..settings import settings
from .auth import get_current_user, get_optional_user

router = APIRouter(prefix="/quiz", tags=["quizzes"])

logger = logging.getLogger(__name__)

VISIBILITIES = ("public", "private", "unlisted")
MAX_IMAGES = 5
MAX_IMAGE_BYTES = 10 * 1024 * 1024


class QuestionIn(BaseModel):
	type: str = "short_answer"
	question: str
	options: List[str] = Field(default_factory=list)
	answer: Any = ""
	points: Union[int, float, str, None] = None


class DraftQuiz(BaseModel):
	title: str
	subject: Optional[str] = None
	difficulty: Optional[str] = None
	description: Optional[str] = ""
	visibility: str = "private"
	questions: List[QuestionIn] = Field(default_factory=list)


class UpdateQuizRequest(BaseModel):
	title: Optional[str] = None
	description: Optional[str] = None
	visibility: Optional[str] = None
	questions: Optional[List[QuestionIn]] = None


class GenerateRequest(BaseModel):
	title: Optional[str] = None
	subject: str
	topic: str
	difficulty: str = "Medium"
	num_questions: int = Field(default=5, ge=1, le=30)
	example: Optional[str] = None


class SubmitRequest(BaseModel):
	quiz_id: Optional[str] = None
	draft_quiz: Optional[DraftQuiz] = None
	answers: Union[List[Any], Dict[str, Any], None] = None


async def get_gemini_client():
	"""Yield a Gemini client, or None when no API key is configured."""
	if not settings.gemini_api_key:
		yield None
		return
	client = GeminiClient()
	try:
		yield client
	finally:
		await client.aclose()


def quiz_to_dict(quiz: Quiz) -> Dict[str, Any]:
	return {
		"id": quiz.id,
		"title": quiz.title,
		"description": quiz.description or "",
		"subject": quiz.subject,
		"difficulty": quiz.difficulty,
		"visibility": quiz.visibility,
		"questions": quiz.questions or [],
		"author": quiz.author,
		"ownerId": quiz.owner_id,
		"createdAt": quiz.created_at,
		"updatedAt": quiz.updated_at,
	}


def _check_visibility(value: str) -> str:
	if value not in VISIBILITIES:
		raise HTTPException(status_code=400, detail=f"visibility must be one of {', '.join(VISIBILITIES)}")
	return value


def _questions_payload(questions: List[QuestionIn], *, invalid_points: int = DEFAULT_POINTS) -> List[Dict[str, Any]]:
	return clean_questions([q.model_dump() for q in questions], default_points=invalid_points)


def _create_quiz(db: Session, user: User, draft: DraftQuiz, *, visibility: str) -> Quiz:
	questions = _questions_payload(draft.questions)
	if not draft.title.strip():
		raise HTTPException(status_code=400, detail="title is required")
	if not questions:
		raise HTTPException(status_code=400, detail="A quiz needs at least one question")
	quiz = Quiz(
		title=draft.title.strip(),
		description=draft.description or "",
		subject=draft.subject,
		difficulty=draft.difficulty,
		visibility=_check_visibility(visibility),
		questions=questions,
		author=user.username,
		owner_id=user.id,
	)
	db.add(quiz)
	db.commit()
	db.refresh(quiz)
	logger.info("User %s saved quiz %s (%d questions)", user.handle, quiz.id, len(questions))
	return quiz


def _can_view(quiz: Quiz, user: Optional[User]) -> bool:
	if quiz.visibility != "private":
		return True
	return user is not None and (quiz.owner_id == user.id or bool(user.is_admin))


def _get_owned_quiz(db: Session, quiz_id: str, user: User) -> Quiz:
	quiz = db.get(Quiz, quiz_id)
	if quiz is None:
		raise HTTPException(status_code=404, detail="Quiz not found")
	if quiz.owner_id != user.id and not user.is_admin:
		raise HTTPException(status_code=403, detail="You do not own this quiz")
	return quiz


async def _read_images(files: List[UploadFile]) -> List[Dict[str, Any]]:
	if not files:
		raise HTTPException(status_code=400, detail="At least one image is required")
	if len(files) > MAX_IMAGES:
		raise HTTPException(status_code=400, detail=f"At most {MAX_IMAGES} images are allowed")
	parts: List[Dict[str, Any]] = []
	for f in files:
		content = await f.read()
		if len(content) > MAX_IMAGE_BYTES:
			raise HTTPException(status_code=400, detail=f"{f.filename} is larger than 10 MB")
		try:
			img = Image.open(BytesIO(content))
			img.verify()
		except (UnidentifiedImageError, OSError, SyntaxError) as e:
			raise HTTPException(status_code=400, detail=f"{f.filename} is not a valid image: {e}")
		mime_type = Image.MIME.get(img.format or "", f.content_type or "image/png")
		parts.append(image_part(content, mime_type))
	return parts


@router.post("/generate")
async def generate(
	req: GenerateRequest,
	user: User = Depends(get_current_user),
	client: Optional[GeminiClient] = Depends(get_gemini_client),
):
	if client is None:
		raise HTTPException(status_code=503, detail="AI quiz generation is not configured")
	mappings = user.discord_mappings or []
	topic = resolve_nicknames_in_text(req.topic, mappings)["resolvedText"]
	example = enhance_prompt_with_discord_context(req.example, mappings)["enhancedPrompt"] if req.example else None
	try:
		draft = await generate_quiz_from_text(
			client,
			subject=req.subject,
			topic=topic,
			difficulty=req.difficulty,
			num_questions=req.num_questions,
			title=req.title,
			example=example,
		)
	except (GeminiError, QuizGenerationError) as e:
		logger.warning("Quiz generation failed for %s: %s", user.handle, e)
		raise HTTPException(status_code=502, detail=f"Quiz generation failed: {e}")
	return {"draft_quiz": draft}


@router.post("/generate-from-image")
async def generate_from_image(
	subject: str = Form(...),
	difficulty: str = Form("Medium"),
	num_questions: int = Form(5),
	topic: Optional[str] = Form(None),
	example: Optional[str] = Form(None),
	images: List[UploadFile] = File(...),
	user: User = Depends(get_current_user),
	client: Optional[GeminiClient] = Depends(get_gemini_client),
):
	if client is None:
		raise HTTPException(status_code=503, detail="AI quiz generation is not configured")
	if not 1 <= num_questions <= 30:
		raise HTTPException(status_code=400, detail="num_questions must be between 1 and 30")
	parts = await _read_images(images)
	mappings = user.discord_mappings or []
	if topic:
		topic = resolve_nicknames_in_text(topic, mappings)["resolvedText"]
	if example:
		example = enhance_prompt_with_discord_context(example, mappings)["enhancedPrompt"]
	try:
		draft = await generate_quiz_from_images(
			client,
			parts,
			subject=subject,
			difficulty=difficulty,
			num_questions=num_questions,
			topic=topic,
			example=example,
		)
	except (GeminiError, QuizGenerationError) as e:
		logger.warning("Image quiz generation failed for %s: %s", user.handle, e)
		raise HTTPException(status_code=502, detail=f"Quiz generation failed: {e}")
	return {"draft_quiz": draft}


@router.post("/manual", status_code=201)
async def create_manual(draft: DraftQuiz, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	quiz = _create_quiz(db, user, draft, visibility="private")
	return quiz_to_dict(quiz)


@router.post("/save-draft", status_code=201)
async def save_draft(draft: DraftQuiz, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	quiz = _create_quiz(db, user, draft, visibility=draft.visibility or "private")
	return quiz_to_dict(quiz)


@router.get("/mine")
async def my_quizzes(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	rows = db.query(Quiz).filter(Quiz.owner_id == user.id).order_by(Quiz.created_at.desc()).all()
	return [quiz_to_dict(q) for q in rows]


@router.post("/submit")
async def submit(
	req: SubmitRequest,
	user: User = Depends(get_current_user),
	db: Session = Depends(get_db),
	client: Optional[GeminiClient] = Depends(get_gemini_client),
):
	if req.quiz_id:
		quiz = db.get(Quiz, req.quiz_id)
		if quiz is None:
			raise HTTPException(status_code=404, detail="Quiz not found")
		if not _can_view(quiz, user):
			raise HTTPException(status_code=403, detail="This quiz is private")
		quiz_data = quiz_to_dict(quiz)
		is_draft = False
	elif req.draft_quiz is not None:
		quiz_data = req.draft_quiz.model_dump()
		quiz_data["questions"] = _questions_payload(req.draft_quiz.questions)
		is_draft = True
	else:
		raise HTTPException(status_code=400, detail="Either quiz_id or draft_quiz is required")

	questions = quiz_data["questions"]
	answers = normalize_answers(req.answers, len(questions))
	grading, ai_error = await grade_answers(client, questions, answers)
	summary = summarize_results(questions, answers, grading)

	attempt = QuizAttempt(
		user_id=user.id,
		quiz_id=None if is_draft else quiz_data["id"],
		quiz_title=quiz_data["title"],
		total_score=summary["total_score"],
		max_score=summary["max_score"],
		results=summary["results"],
		ai_error=ai_error,
	)
	db.add(attempt)
	db.commit()
	logger.info(
		"User %s scored %s/%s on %s", user.handle, summary["total_score"], summary["max_score"], quiz_data["title"]
	)
	return {
		"attempt_id": attempt.id,
		"quiz": quiz_data,
		"results": summary["results"],
		"total_score": summary["total_score"],
		"max_score": summary["max_score"],
		"is_draft": is_draft,
		"ai_error": ai_error,
	}


@router.get("/{quiz_id}")
async def get_quiz(quiz_id: str, user: Optional[User] = Depends(get_optional_user), db: Session = Depends(get_db)):
	quiz = db.get(Quiz, quiz_id)
	if quiz is None:
		raise HTTPException(status_code=404, detail="Quiz not found")
	if not _can_view(quiz, user):
		raise HTTPException(status_code=403, detail="This quiz is private")
	return quiz_to_dict(quiz)


@router.put("/{quiz_id}")
async def update_quiz(
	quiz_id: str,
	req: UpdateQuizRequest,
	user: User = Depends(get_current_user),
	db: Session = Depends(get_db),
):
	quiz = _get_owned_quiz(db, quiz_id, user)
	if req.title is not None:
		if not req.title.strip():
			raise HTTPException(status_code=400, detail="title is required")
		quiz.title = req.title.strip()
	if req.description is not None:
		quiz.description = req.description
	if req.visibility is not None:
		quiz.visibility = _check_visibility(req.visibility)
	if req.questions is not None:
		quiz.questions = _questions_payload(req.questions, invalid_points=0)
	db.commit()
	db.refresh(quiz)
	return quiz_to_dict(quiz)


@router.delete("/{quiz_id}")
async def delete_quiz(quiz_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	quiz = _get_owned_quiz(db, quiz_id, user)
	delete_quiz_with_attempts(db, quiz.id)
	db.commit()
	logger.info("User %s deleted quiz %s", user.handle, quiz_id)
	return {"ok": True}
