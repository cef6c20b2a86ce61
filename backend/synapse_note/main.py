import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .db import Base, SessionLocal, engine, ensure_schema, get_db
from .cleanup import purge_inactive_users
from .responses import ApiError, api_error_handler, now_iso
from .settings import settings
from .system import get_system_settings
from .routers import auth
from .routers import quizzes
from .routers import admin
from .routers import fastserver
from .routers import api
from .routers import profile
from .routers import tournaments
from .routers import team_matches

logging.basicConfig(level=settings.log_level.upper(), format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)


def run_cleanup_once() -> int:
	"""Run one inactive-user sweep if it is switched on; returns the number of users removed."""
	db = SessionLocal()
	try:
		if not get_system_settings(db).auto_cleanup_enabled:
			return 0
		removed = purge_inactive_users(db)
		if removed:
			logger.info("Background cleanup removed %d inactive users", len(removed))
		return len(removed)
	finally:
		db.close()


async def _cleanup_watcher():
	# Run once at startup, then every interval
	while True:
		try:
			await asyncio.to_thread(run_cleanup_once)
		except SQLAlchemyError:
			logger.exception("Background cleanup failed")
		await asyncio.sleep(settings.cleanup_interval_seconds)


@asynccontextmanager
async def lifespan(app: FastAPI):
	# Initialize DB schema
	Base.metadata.create_all(bind=engine)
	# Apply lightweight dev migrations
	ensure_schema()
	task = asyncio.create_task(_cleanup_watcher())
	try:
		yield
	finally:
		task.cancel()


app = FastAPI(title="Synapse Note API", lifespan=lifespan)
app.add_exception_handler(ApiError, api_error_handler)
app.include_router(auth.router)
app.include_router(quizzes.router)
app.include_router(admin.router)
app.include_router(fastserver.router)
app.include_router(api.router)
app.include_router(profile.router)
app.include_router(tournaments.router)
app.include_router(team_matches.router)


@app.get("/health")
def health(db: Session = Depends(get_db)):
	try:
		db.execute(text("SELECT 1"))
		database = "ok"
	except SQLAlchemyError as e:
		logger.error("Database health check failed: %s", e)
		database = "error"
	return {
		"status": "ok" if database == "ok" else "degraded",
		"database": database,
		"ai_configured": bool(settings.gemini_api_key),
		"apps_script": {
			"enabled": settings.use_google_apps_script,
			"configured": bool(settings.google_apps_script_url),
		},
		"timestamp": now_iso(),
	}


@app.get("/info")
def root():
	return {
		"status": "ok",
		"name": "Synapse Note",
		"environment": settings.environment,
		"gemini_configured": bool(settings.gemini_api_key),
	}
