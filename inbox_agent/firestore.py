"""Firestore client for agent storage.

The client is created once per process. Credentials come from
``INBOX_AGENT_FIREBASE_CREDENTIALS`` (a service-account JSON path) when set,
otherwise from Application Default Credentials. ``INBOX_AGENT_FIRESTORE_PROJECT``
overrides the project id.
"""
from __future__ import annotations

import logging
import os
import threading
from typing import Optional

import firebase_admin
from firebase_admin import credentials, firestore

logger = logging.getLogger(__name__)

CREDENTIALS_ENV = "INBOX_AGENT_FIREBASE_CREDENTIALS"
PROJECT_ENV = "INBOX_AGENT_FIRESTORE_PROJECT"

_client = None
_client_lock = threading.Lock()


def _app_options() -> Optional[dict]:
    project_id = os.getenv(PROJECT_ENV)
    return {"projectId": project_id} if project_id else None


def _credential():
    path = os.getenv(CREDENTIALS_ENV)
    if path:
        return credentials.Certificate(path)
    return None


def get_firestore_client():
    """Return the process-wide Firestore client, initialising Firebase if needed.

    Raises whatever ``firebase_admin`` raises when no credentials are
    available; ``open_store`` treats that as "use the file store".
    """
    global _client
    with _client_lock:
        if _client is not None:
            return _client
        if not firebase_admin._apps:
            firebase_admin.initialize_app(_credential(), _app_options())
            logger.info(
                f"Initialised Firebase app (project={os.getenv(PROJECT_ENV) or 'default'}, "
                f"credentials={'file' if os.getenv(CREDENTIALS_ENV) else 'application default'})"
            )
        _client = firestore.client()
        return _client


def reset_firestore_client() -> None:
    """Forget the cached client so the next call picks up new credentials."""
    global _client
    with _client_lock:
        _client = None
