"""Unit tests for bearer-token decoding and the current-user dependency."""

from __future__ import annotations

from datetime import timedelta
from uuid import uuid4

import pytest
from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials

from core.security import decode_token
from dependencies.auth import get_current_user_id
from tests.fixtures.tokens import issue_token


def bearer(token: str) -> HTTPAuthorizationCredentials:
    return HTTPAuthorizationCredentials(scheme="Bearer", credentials=token)


class TestDecodeToken:
    """Tests for verifying tokens issued by the identity provider."""

    def test_decode_token_valid(self):
        user_id = str(uuid4())
        data = decode_token(issue_token(user_id))
        assert data.sub == user_id
        assert data.scopes == []

    def test_decode_token_with_scopes(self):
        token = issue_token("user-1", scopes=["reports:stream"])
        assert decode_token(token).scopes == ["reports:stream"]

    def test_decode_token_expired(self):
        token = issue_token("user123", expires_in=timedelta(minutes=-1))
        with pytest.raises(HTTPException) as exc:
            decode_token(token)
        assert exc.value.status_code == 401
        assert exc.value.detail == "Could not validate credentials"
        assert exc.value.headers == {"WWW-Authenticate": "Bearer"}

    def test_decode_token_invalid(self):
        with pytest.raises(HTTPException) as exc:
            decode_token("not.a.valid.jwt")
        assert exc.value.status_code == 401

    def test_decode_token_wrong_signature(self):
        token = issue_token("user-1", secret="other-secret")
        with pytest.raises(HTTPException) as exc:
            decode_token(token)
        assert exc.value.status_code == 401

    def test_decode_token_missing_sub(self):
        with pytest.raises(HTTPException) as exc:
            decode_token(issue_token(None))
        assert exc.value.detail == "Token missing subject"


class TestCurrentUserId:
    @pytest.mark.asyncio
    async def test_returns_subject(self):
        assert await get_current_user_id(bearer(issue_token("user-42"))) == "user-42"

    @pytest.mark.asyncio
    async def test_blank_subject_rejected(self):
        with pytest.raises(HTTPException) as exc:
            await get_current_user_id(bearer(issue_token("   ")))
        assert exc.value.status_code == 401

    @pytest.mark.asyncio
    async def test_missing_header_rejected(self):
        with pytest.raises(HTTPException) as exc:
            await get_current_user_id(None)
        assert exc.value.status_code == 401
        assert exc.value.headers == {"WWW-Authenticate": "Bearer"}
