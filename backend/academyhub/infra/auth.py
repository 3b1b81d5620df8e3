"""Caller identity for search endpoints.

Authentication happens upstream; the gateway forwards the verified user id in
the ``X-User-Id`` header. Endpoints that need a user depend on
``get_current_user``; anonymous-friendly ones use ``get_optional_user``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from fastapi import Header, HTTPException, Request, status


@dataclass(slots=True)
class AuthenticatedUser:
	id: str
	university_id: Optional[str] = None


def _from_headers(x_user_id: Optional[str], x_university_id: Optional[str]) -> Optional[AuthenticatedUser]:
	user_id = (x_user_id or "").strip()
	if not user_id:
		return None
	university_id = (x_university_id or "").strip() or None
	return AuthenticatedUser(id=user_id, university_id=university_id)


async def get_current_user(
	x_user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
	x_university_id: Optional[str] = Header(default=None, alias="X-University-Id"),
) -> AuthenticatedUser:
	user = _from_headers(x_user_id, x_university_id)
	if user is None:
		raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="not_authenticated")
	return user


async def get_optional_user(
	x_user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
	x_university_id: Optional[str] = Header(default=None, alias="X-University-Id"),
) -> Optional[AuthenticatedUser]:
	return _from_headers(x_user_id, x_university_id)


def client_ip(request: Request) -> str:
	"""Best-effort caller address, honouring the first X-Forwarded-For hop."""

	forwarded = request.headers.get("X-Forwarded-For")
	if forwarded:
		first = forwarded.split(",")[0].strip()
		if first:
			return first
	if request.client and request.client.host:
		return request.client.host
	return "unknown"
