# utils/app_context.py

import threading
from dataclasses import dataclass
from typing import Any, Optional
import firebase_admin
from firebase_admin import credentials, firestore, messaging
from firebase_functions import logger

from config.loader import Settings, get_settings
from .errors import ConfigurationError


@dataclass
class AppContext:
    """Process-wide handles shared by every request."""
    settings: Settings
    db: Any
    messaging: Any = messaging
    app: Any = None


_context: Optional[AppContext] = None
_context_lock = threading.Lock()


def _initialize_firebase_app(settings: Settings):
    try:
        return firebase_admin.get_app()
    except ValueError:
        pass

    options = {"httpTimeout": settings.dispatch_timeout_seconds}
    if settings.credentials_path:
        try:
            cred = credentials.Certificate(settings.credentials_path)
        except (IOError, ValueError) as e:
            raise ConfigurationError(f"Invalid Firebase credentials at {settings.credentials_path}: {e}") from e
        logger.info(f"Initializing Firebase app with service account {settings.credentials_path}")
        return firebase_admin.initialize_app(cred, options)

    logger.info("Initializing Firebase app with application default credentials")
    return firebase_admin.initialize_app(options=options)


def build_app_context(settings: Optional[Settings] = None) -> AppContext:
    settings = settings or get_settings()
    app = _initialize_firebase_app(settings)
    return AppContext(settings=settings, db=firestore.client(app=app), messaging=messaging, app=app)


def get_app_context() -> AppContext:
    """Return the shared AppContext, building it on first use exactly once."""
    global _context
    if _context is None:
        with _context_lock:
            if _context is None:
                _context = build_app_context()
    return _context


def set_app_context(context: Optional[AppContext]) -> None:
    """Install a prebuilt context, or clear it with None."""
    global _context
    with _context_lock:
        _context = context
