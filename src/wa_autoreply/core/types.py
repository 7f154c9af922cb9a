"""Shared types and enumerations."""

from __future__ import annotations

from enum import StrEnum


class SessionState(StrEnum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    QR_READY = "qr_ready"
    AUTHENTICATED = "authenticated"
    READY = "ready"
    AUTH_FAILED = "auth_failed"
    FAILED = "failed"


class Role(StrEnum):
    USER = "user"
    ASSISTANT = "assistant"


class Presence(StrEnum):
    COMPOSING = "composing"
    AVAILABLE = "available"
