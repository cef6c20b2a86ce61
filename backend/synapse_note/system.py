from __future__ import annotations
from typing import Any, Dict
from sqlalchemy.orm import Session

from .models import SystemSettings

GENERAL_KEY = "general"


def get_system_settings(db: Session) -> SystemSettings:
	"""Return the stored settings row, or an unsaved row holding the defaults."""
	row = db.get(SystemSettings, GENERAL_KEY)
	if row is None:
		row = SystemSettings(
			key=GENERAL_KEY,
			allow_registration=True,
			maintenance_mode=False,
			registration_message="",
			auto_cleanup_enabled=False,
		)
	return row


def settings_to_dict(row: SystemSettings) -> Dict[str, Any]:
	return {
		"allowRegistration": row.allow_registration,
		"maintenanceMode": row.maintenance_mode,
		"registrationMessage": row.registration_message or "",
		"autoCleanupEnabled": row.auto_cleanup_enabled,
		"updatedAt": row.updated_at,
		"updatedBy": row.updated_by,
	}
