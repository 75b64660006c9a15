from typing import Optional

import structlog
from sqlalchemy.orm import Session

from . import models
from .core.timeutils import utcnow


class ComplianceLogger:
	"""Stores audit events in the AuditLog table using the caller's session.

	The row is only added, never committed here: it becomes durable together
	with the business write it describes, or disappears with its rollback.
	"""

	def __init__(self, db: Session):
		self.db = db
		self.logger = structlog.get_logger("telecare.audit")

	def log_event(
		self,
		actor_id: Optional[int],
		action: models.AuditAction,
		category: str,
		details: Optional[str] = None,
		severity: str = "INFO",
		resource_type: Optional[str] = None,
		resource_id: Optional[int] = None,
	) -> models.AuditLog:
		db_log = models.AuditLog(
			actor_id=actor_id,
			action=action,
			category=category,
			severity=severity,
			resource_type=resource_type,
			resource_id=resource_id,
			details=details,
			timestamp=utcnow(),
		)
		self.db.add(db_log)
		self.logger.info(
			"audit_event",
			actor_id=actor_id,
			action=action.value,
			category=category,
			resource_type=resource_type,
			resource_id=resource_id,
			details=details,
		)
		return db_log

	def log_failure(
		self,
		actor_id: Optional[int],
		action: models.AuditAction,
		category: str,
		error_code: str,
		resource_type: Optional[str] = None,
		resource_id: Optional[int] = None,
	) -> None:
		"""Failed operations roll back, so they are only written to the log stream."""
		self.logger.warning(
			"audit_event_failed",
			actor_id=actor_id,
			action=action.value,
			category=category,
			error_code=error_code,
			resource_type=resource_type,
			resource_id=resource_id,
		)
