"""Schemas related to the Google consent flow."""

from __future__ import annotations

from pydantic import BaseModel, Field


class OAuthCallbackPayload(BaseModel):
    """Query parameters Google sends back to ``/google/callback``."""

    code: str = Field(..., description="Authorization code returned by Google OAuth.")
    state: str = Field(..., description="Signed state issued by /google/authorize.")


__all__ = ["OAuthCallbackPayload"]
