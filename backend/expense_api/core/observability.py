"""Sentry wiring for the receipt API and the scan CLI.

Both entry points call ``init_sentry`` with their own service tag. Events
and breadcrumbs pass through the scrubbers below before leaving the
process: receipt images travel as base64 data URLs in model requests and
must never reach Sentry, and neither may bearer tokens or Supabase keys.
Every helper is a no-op when the SDK or ``SENTRY_DSN`` is missing.
"""

from __future__ import annotations

import re
from typing import Any, Dict, Optional

from expense_api.core.config import settings

try:  # Optional import
	import sentry_sdk  # type: ignore
	from sentry_sdk.integrations.fastapi import FastApiIntegration  # type: ignore
	from sentry_sdk.integrations.httpx import HttpxIntegration  # type: ignore
	_SENTRY_AVAILABLE = True
except Exception:  # pragma: no cover
	_SENTRY_AVAILABLE = False

IMAGE_PLACEHOLDER = "[receipt image]"
SECRET_HEADERS = ("authorization", "cookie", "set-cookie", "apikey", "x-api-key")

_DATA_URL = re.compile(r"data:image/[\w.+-]+;base64,[A-Za-z0-9+/=]+")


def _scrub(value: Any) -> Any:
	"""Replace embedded image data URLs anywhere in a nested payload."""
	if isinstance(value, str):
		return _DATA_URL.sub(IMAGE_PLACEHOLDER, value)
	if isinstance(value, dict):
		return {k: _scrub(v) for k, v in value.items()}
	if isinstance(value, (list, tuple)):
		return [_scrub(v) for v in value]
	return value


def _before_send(event: Dict[str, Any], hint: Dict[str, Any] | None = None) -> Dict[str, Any]:
	req = event.get("request") or {}
	headers = req.get("headers") or {}
	for key in list(headers.keys()):
		if key.lower() in SECRET_HEADERS:
			headers.pop(key, None)
	# Multipart uploads carry the raw receipt.
	req.pop("data", None)
	if req:
		event["request"] = req

	for key in ("extra", "contexts", "logentry", "message"):
		if key in event:
			event[key] = _scrub(event[key])
	crumbs = event.get("breadcrumbs")
	if isinstance(crumbs, dict) and "values" in crumbs:
		crumbs["values"] = [_before_breadcrumb(c) for c in crumbs["values"]]
	return event


def _before_breadcrumb(crumb: Dict[str, Any], hint: Dict[str, Any] | None = None) -> Dict[str, Any]:
	if "message" in crumb:
		crumb["message"] = _scrub(crumb["message"])
	if crumb.get("data"):
		crumb["data"] = _scrub(crumb["data"])
	return crumb


def init_sentry(service: str) -> bool:
	"""Initialise Sentry once per process; returns whether it is active."""
	if not (_SENTRY_AVAILABLE and settings.SENTRY_DSN):  # pragma: no cover - simple guard
		return False
	if getattr(init_sentry, "_done", False):
		return True
	sentry_sdk.init(
		dsn=settings.SENTRY_DSN,
		integrations=[FastApiIntegration(), HttpxIntegration()],
		traces_sample_rate=float(settings.SENTRY_TRACES_SAMPLE_RATE or 0),
		environment=settings.ENVIRONMENT,
		release=settings.SENTRY_RELEASE,
		send_default_pii=False,
		before_send=_before_send,
		before_breadcrumb=_before_breadcrumb,
	)
	sentry_sdk.set_tag("service", service)
	init_sentry._done = True  # type: ignore[attr-defined]
	return True


def _enabled() -> bool:
	return bool(_SENTRY_AVAILABLE and settings.SENTRY_DSN)


def sentry_set_tags(tags: Dict[str, Any]) -> None:
	if not _enabled():
		return
	try:
		scope = sentry_sdk.get_current_scope()  # type: ignore
		for k, v in (tags or {}).items():
			scope.set_tag(str(k), str(v)[:128] if v is not None else "")
	except Exception:
		return


def sentry_breadcrumb(category: str, message: str, level: str = "info", data: Optional[Dict[str, Any]] = None) -> None:
	"""Record a pipeline or scan-flow step on the current scope."""
	if not _enabled():
		return
	try:
		sentry_sdk.add_breadcrumb(category=category, message=message, level=level, data=data or {})  # type: ignore
	except Exception:
		return


def sentry_capture(exc: BaseException) -> None:
	if not _enabled():
		return
	try:
		sentry_sdk.capture_exception(exc)  # type: ignore
	except Exception:
		return


__all__ = ["init_sentry", "sentry_set_tags", "sentry_breadcrumb", "sentry_capture"]
