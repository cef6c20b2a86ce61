from __future__ import annotations
from sqlalchemy import create_engine, inspect
from sqlalchemy.orm import sessionmaker, declarative_base
from .settings import settings


DATABASE_URL = settings.database_url or "sqlite:///./synapse.db"

_connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(DATABASE_URL, connect_args=_connect_args, future=True)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, future=True)
Base = declarative_base()


def get_db():
	db = SessionLocal()
	try:
		yield db
	finally:
		db.close()


# Columns added after the first release; older SQLite files get them patched in
_LATE_COLUMNS = {
	"users": {
		"bio": "ALTER TABLE users ADD COLUMN bio TEXT DEFAULT '' NOT NULL",
		"discord_mappings": "ALTER TABLE users ADD COLUMN discord_mappings JSON",
	},
	"quiz_attempts": {
		"results": "ALTER TABLE quiz_attempts ADD COLUMN results JSON",
		"ai_error": "ALTER TABLE quiz_attempts ADD COLUMN ai_error BOOLEAN DEFAULT 0 NOT NULL",
	},
}


def ensure_schema() -> None:
	inspector = inspect(engine)
	tables = set(inspector.get_table_names())
	with engine.begin() as conn:
		for table, columns in _LATE_COLUMNS.items():
			if table not in tables:
				continue
			existing = {c["name"] for c in inspector.get_columns(table)}
			for name, ddl in columns.items():
				if name not in existing:
					conn.exec_driver_sql(ddl)
