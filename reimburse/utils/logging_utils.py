"""Lightweight JSON logging utilities for workflow instrumentation."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict

from reimburse.services.config_service import get_settings

logger = logging.getLogger(__name__)

LOG_FILE_NAME = "workflow.log"
SENSITIVE_KEYS = {"note", "reason", "text", "password", "token"}


def workflow_log_path() -> Path:
	"""Current log file, resolved from settings on every call."""

	return Path(get_settings().log_dir) / LOG_FILE_NAME


def log_workflow_event(event: Dict[str, Any]) -> None:
	"""Persist a structured workflow event without leaking note bodies."""

	payload = {
		"timestamp": datetime.now(timezone.utc).isoformat(timespec="milliseconds"),
	}
	for key, value in event.items():
		if key is None:
			continue
		normalized = str(key)
		if normalized.lower() in SENSITIVE_KEYS:
			continue
		payload[normalized] = value

	log_file = workflow_log_path()
	try:
		log_file.parent.mkdir(parents=True, exist_ok=True)
		with log_file.open("a", encoding="utf-8") as handle:
			json.dump(payload, handle, ensure_ascii=False, default=str)
			handle.write("\n")
	except Exception as exc:  # pragma: no cover - logging must never break the workflow
		logger.debug("Failed to write workflow log: %s", exc, exc_info=True)


def log_transition_event(event: Dict[str, Any]) -> None:
	"""Record a status change."""

	payload = {"event_type": "status_change"}
	payload.update(event)
	log_workflow_event(payload)


def log_trail_event(event: Dict[str, Any]) -> None:
	"""Record receipt audits, notes and submissions."""

	payload = {"event_type": "trail"}
	payload.update(event)
	log_workflow_event(payload)
