"""
Quiz generation and grading
===========================

Prompt construction and response handling for the three LLM-backed steps of
the quiz workflow:

- generating a draft quiz from a text description,
- generating a draft quiz from photographed textbook pages (generate, then a
  second verification pass over the same images),
- grading a set of answers, with a deterministic fallback for objective
  question types when the model is unavailable or returns garbage.

Everything here works on plain dicts so that saved quizzes and unsaved drafts
go through the same code.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, List, Optional, Tuple

from .gemini_client import GeminiClient, GeminiError

logger = logging.getLogger(__name__)

QUESTION_TYPES = ("multiple_choice", "short_answer", "descriptive")
DEFAULT_POINTS = 10

_JSON_FORMAT = '[{"type": "multiple_choice", "question": "Question text", "options": ["Option 1", "Option 2"], "answer": "Correct option text", "points": 10}]'


class QuizGenerationError(RuntimeError):
	pass


# ============================================================================
# RESPONSE PARSING
# ============================================================================

def extract_json_array(text: str) -> List[Any]:
	"""Return the first JSON array found in a model reply.

	Models wrap output in code fences or add a sentence before it despite
	being told not to, so try the raw text, then a ```json block, then the
	outermost brackets.
	"""
	if not isinstance(text, str):
		raise QuizGenerationError("Model returned no text")
	candidates = [text.strip()]
	fenced = re.search(r"```(?:json)?\s*([\s\S]*?)\s*```", text)
	if fenced:
		candidates.append(fenced.group(1))
	bracketed = re.search(r"\[[\s\S]*\]", text)
	if bracketed:
		candidates.append(bracketed.group(0))
	for candidate in candidates:
		try:
			data = json.loads(candidate)
		except ValueError:
			continue
		if isinstance(data, list):
			return data
	raise QuizGenerationError("Model did not return a JSON array")


def _coerce_points(value: Any, default: int = DEFAULT_POINTS) -> int:
	try:
		points = int(float(value))
	except (TypeError, ValueError, OverflowError):
		return default
	return max(points, 0)


def clean_questions(raw: List[Any], *, default_points: int = DEFAULT_POINTS) -> List[Dict[str, Any]]:
	"""Normalize model-produced questions into the stored question shape."""
	questions: List[Dict[str, Any]] = []
	for item in raw:
		if not isinstance(item, dict):
			continue
		text = str(item.get("question") or "").strip()
		if not text:
			continue
		qtype = item.get("type")
		if qtype not in QUESTION_TYPES:
			qtype = "short_answer"
		options = item.get("options")
		answer = item.get("answer")
		question: Dict[str, Any] = {
			"type": qtype,
			"question": text,
			"options": [str(o) for o in options] if isinstance(options, list) else [],
			"answer": "" if answer is None else str(answer),
			"points": _coerce_points(item.get("points"), default_points),
		}
		questions.append(question)
	return questions


# ============================================================================
# PROMPTS
# ============================================================================

def _conditions(subject: str, topic: Optional[str], difficulty: str, num_questions: int, example: Optional[str], *, from_images: bool) -> str:
	if from_images:
		topic_line = topic or "infer from the images (may be left open)"
	else:
		topic_line = topic or "not specified"
	return (
		"# Conditions\n"
		f"- Subject: {subject}\n"
		f"- Field / theme: {topic_line}\n"
		f"- Target grade (approximate): {difficulty}\n"
		f"- Number of questions: about {num_questions}\n"
		f"- Reference material: {example or 'none'}\n"
	)


def build_generation_prompt(
	subject: str,
	topic: Optional[str],
	difficulty: str,
	num_questions: int,
	example: Optional[str] = None,
) -> str:
	return (
		"You are an outstanding educational AI who understands the constraints of this system.\n"
		+ _conditions(subject, topic, difficulty, num_questions, example, from_images=False)
		+ "# Absolute rules\n"
		"1. Respect the answer format constraint above all. Students can only choose an option, type a short word or formula, or write prose. Never ask for drawings or diagrams.\n"
		"2. For mathematics and English, when reference material is given, mostly follow its question style and difficulty.\n"
		"3. Combine multiple_choice, short_answer and descriptive questions in whatever mix suits the topic best.\n"
		"4. Assign points to every question according to its difficulty.\n"
		"5. No question or option may give away the answer to another question.\n"
		"6. Never ask about the same word twice in one quiz.\n"
		"7. Every question must have its correct answer set. Missing answers are not allowed.\n"
		"8. Re-check every question against its answer and fix any mistakes.\n"
		"9. Return ONLY the JSON array below. No explanation before or after, no ```json fences.\n"
		"# JSON output format (no explanations)\n"
		f"{_JSON_FORMAT}"
	)


def build_image_generation_prompt(
	subject: str,
	topic: Optional[str],
	difficulty: str,
	num_questions: int,
	example: Optional[str] = None,
) -> str:
	return (
		"You are an expert at writing accurate, educational quizzes from the provided images.\n"
		"# About the images\n"
		"These images are pages from a textbook or notebook. Read them precisely and write questions under the conditions below.\n"
		+ _conditions(subject, topic, difficulty, num_questions, example, from_images=True)
		+ "# Absolute rules\n"
		"1. Base the questions on what can be read from the images, plus the field, theme and reference material when given.\n"
		"2. Respect the answer format constraint above all. Students can only choose an option, type a short word or formula, or write prose. Never ask for drawings, and never ask questions that need the source material to answer.\n"
		"3. Do not ask questions that need a table the student cannot see. If a table is required, include it in the question text.\n"
		"4. Combine multiple_choice, short_answer and descriptive questions in whatever mix suits the images best.\n"
		"5. Assign suitable points to every question.\n"
		"6. Ask about each word or fact at most once.\n"
		"7. Every question must have exactly one correct answer derivable from the images. If the answer cannot be read from the images, do not include the question. Re-check for missing or wrong answers.\n"
		"8. Keep questions independent so none gives away another.\n"
		"9. Return ONLY the JSON array below. No explanation before or after, no ```json fences.\n"
		"# JSON output format (no explanations)\n"
		f"{_JSON_FORMAT}"
	)


def build_verification_prompt(questions: List[Dict[str, Any]]) -> str:
	return (
		"You are an extremely strict and accurate proofreading AI. Your only job is to find and fix mistakes in a quiz another AI generated from the attached images.\n"
		"# Situation\n"
		"The quiz may contain errors caused by misreading the images.\n"
		"# Your task\n"
		"1. Check every question and answer in the generated quiz against the images, one by one.\n"
		"2. If an answer is wrong, correct the \"answer\" field to what the images actually say.\n"
		"3. If a question cannot be answered from the images, remove the whole question object from the array.\n"
		"4. Do not change question text or options. Your top priority is the correctness of the answers.\n"
		"5. Output ONLY the corrected JSON array. No explanation, no ```json fences.\n"
		"# Generated quiz (JSON) to verify and fix\n"
		f"{json.dumps(questions, ensure_ascii=False, indent=2)}\n"
	)


def build_grading_prompt(questions: List[Dict[str, Any]], answers: List[str]) -> str:
	return (
		"You are a fair and excellent teacher. Grade the test a student has taken.\n"
		"# Questions and correct answers\n"
		f"{json.dumps(questions, ensure_ascii=False, indent=2)}\n"
		"# Student answers\n"
		f"{json.dumps(answers, ensure_ascii=False, indent=2)}\n"
		"# Absolute rules\n"
		"Strict grading: spelling mistakes, blank answers and whitespace-only answers get 0 points with no partial credit. (In essays or descriptive answers, deduct about 1 point per spelling mistake instead.)\n"
		"# Instructions\n"
		"1. Decide for each question whether the student's answer is correct.\n"
		"2. For descriptive questions, give partial credit when the intent is right even if the wording differs. Never give partial credit to blank or whitespace-only answers.\n"
		"3. For word questions, a misspelled word, or a multi-word phrase where a single word was expected, scores 0.\n"
		"4. An empty string \"\" scores 0.\n"
		"5. If you notice a question has no valid answer, say so in its feedback.\n"
		"6. Be strict with partial credit.\n"
		"7. Return ONLY a JSON array with one object per question, in order.\n"
		"# JSON output format\n"
		'[{"is_correct": true, "score": 10, "feedback": "Specific, useful feedback for the student"}]'
	)


# ============================================================================
# GENERATION
# ============================================================================

def _draft(title: str, subject: str, difficulty: str, questions: List[Dict[str, Any]]) -> Dict[str, Any]:
	return {
		"title": title,
		"subject": subject,
		"difficulty": difficulty,
		"questions": questions,
		"visibility": "private",
	}


async def generate_quiz_from_text(
	client: GeminiClient,
	*,
	subject: str,
	topic: str,
	difficulty: str,
	num_questions: int,
	title: Optional[str] = None,
	example: Optional[str] = None,
) -> Dict[str, Any]:
	prompt = build_generation_prompt(subject, topic, difficulty, num_questions, example)
	raw = await client.generate(prompt)
	questions = clean_questions(extract_json_array(raw))
	if not questions:
		raise QuizGenerationError("Model returned no usable questions")
	draft_title = title.strip() if title and title.strip() else f"{topic} quiz"
	return _draft(draft_title, subject, difficulty, questions)


async def generate_quiz_from_images(
	client: GeminiClient,
	image_parts: List[Dict[str, Any]],
	*,
	subject: str,
	difficulty: str,
	num_questions: int,
	topic: Optional[str] = None,
	example: Optional[str] = None,
) -> Dict[str, Any]:
	if not image_parts:
		raise QuizGenerationError("No images supplied")
	prompt = build_image_generation_prompt(subject, topic, difficulty, num_questions, example)
	raw = await client.generate_multimodal(prompt, image_parts)
	initial = clean_questions(extract_json_array(raw))
	logger.info("Image quiz: %d questions before verification", len(initial))

	verified_raw = await client.generate_multimodal(build_verification_prompt(initial), image_parts)
	verified = clean_questions(extract_json_array(verified_raw))
	logger.info("Image quiz: %d questions after verification", len(verified))
	if not verified:
		raise QuizGenerationError("No questions survived verification")
	return _draft(f"{subject} quiz (from images)", subject, difficulty, verified)


# ============================================================================
# GRADING
# ============================================================================

def normalize_answers(answers: Any, count: int) -> List[str]:
	"""Return exactly ``count`` answer strings.

	Forms may omit unanswered fields, so ``answers`` can be missing, a list,
	or a mapping keyed by question index (``{"0": "a", "2": "b"}``).
	"""
	normalized: List[str] = []
	for i in range(count):
		value: Any = None
		if isinstance(answers, list):
			value = answers[i] if i < len(answers) else None
		elif isinstance(answers, dict):
			value = answers.get(i, answers.get(str(i)))
		normalized.append(value if isinstance(value, str) else "")
	return normalized


def fallback_grade(questions: List[Dict[str, Any]], answers: List[str]) -> List[Dict[str, Any]]:
	results: List[Dict[str, Any]] = []
	for q, user_answer in zip(questions, answers):
		qtype = q.get("type")
		if qtype in ("multiple_choice", "short_answer"):
			correct = str(q.get("answer") or "").strip()
			is_correct = (user_answer or "").strip() == correct
			results.append({
				"is_correct": is_correct,
				"score": q.get("points", 0) if is_correct else 0,
				"feedback": "Correct!" if is_correct else f"Incorrect. Correct answer: {q.get('answer')}",
			})
		elif qtype == "descriptive":
			results.append({
				"is_correct": None,
				"score": None,
				"feedback": "AI grading failed, so this descriptive question could not be graded.",
			})
		else:
			results.append({"is_correct": None, "score": 0, "feedback": "Unsupported question type."})
	return results


async def grade_answers(
	client: Optional[GeminiClient],
	questions: List[Dict[str, Any]],
	answers: List[str],
) -> Tuple[List[Any], bool]:
	"""Grade with the model; returns ``(grading, ai_error)``."""
	if client is None:
		logger.warning("Gemini not configured; using fallback grading")
		return fallback_grade(questions, answers), True
	try:
		raw = await client.generate(build_grading_prompt(questions, answers))
		return extract_json_array(raw), False
	except (GeminiError, QuizGenerationError) as exc:
		logger.warning("AI grading failed, using fallback grading: %s", exc)
		return fallback_grade(questions, answers), True


def _is_number(value: Any) -> bool:
	return isinstance(value, (int, float)) and not isinstance(value, bool)


def summarize_results(
	questions: List[Dict[str, Any]],
	answers: List[str],
	grading: List[Any],
) -> Dict[str, Any]:
	total_score: float = 0
	max_score: float = 0
	results: List[Dict[str, Any]] = []
	for i, q in enumerate(questions):
		r = grading[i] if i < len(grading) and isinstance(grading[i], dict) else None
		if r is None:
			r = {"score": 0, "is_correct": False, "feedback": "Grading error"}
		score = r.get("score")
		points = q.get("points")
		if _is_number(score):
			total_score += score
		if _is_number(points):
			max_score += points
		results.append({
			"question": q.get("question"),
			"points": points,
			"user_answer": answers[i] if i < len(answers) else "",
			"correct_answer": q.get("answer"),
			"is_correct": r.get("is_correct"),
			"score": score,
			"feedback": r.get("feedback"),
		})
	return {"results": results, "total_score": total_score, "max_score": max_score}
