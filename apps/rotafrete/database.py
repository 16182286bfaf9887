import logging
from typing import Any

import firebase_admin
from firebase_admin import credentials, firestore, storage

from .settings import settings

logger = logging.getLogger(__name__)


def _app() -> firebase_admin.App:
    # Initialize Firebase only once, on first use.
    if not firebase_admin._apps:
        cred = credentials.Certificate(settings.FIREBASE_CREDENTIALS_PATH)
        options = {}
        if settings.FIREBASE_STORAGE_BUCKET:
            options["storageBucket"] = settings.FIREBASE_STORAGE_BUCKET
        firebase_admin.initialize_app(cred, options)
    return firebase_admin.get_app()


class _Lazy:
    """Proxy that builds the wrapped SDK client the first time it is touched."""

    def __init__(self, factory):
        self._factory = factory
        self._target = None

    def _resolve(self):
        if self._target is None:
            _app()
            self._target = self._factory()
        return self._target

    def __getattr__(self, name: str) -> Any:
        return getattr(self._resolve(), name)


db = _Lazy(firestore.client)
bucket = _Lazy(storage.bucket)


# Helper to log actions
def log_action(user_id: str, action: str, details: str, ip: str = None):
    try:
        db.collection("audit_logs").add({
            "user_id": user_id,
            "action": action,
            "details": details,
            "ip_address": ip,
            "timestamp": firestore.SERVER_TIMESTAMP
        })
    except Exception as e:
        logger.warning("Audit log error: %s", e)
