import json
import os
import threading


def _env_bool(name: str, default: str) -> bool:
    return os.environ.get(name, default).lower() in ["true", "1", "yes", "on"]


class BackendSettings:
    _instance = None
    _lock = threading.Lock()

    def __init__(self):
        self.DEBUG_MODE = os.environ.get("DEBUG_MODE", "development")

        # Connection limits
        self.WS_MAX_TOTAL_CONNECTIONS = int(os.environ.get("WS_MAX_TOTAL_CONNECTIONS", "10000"))
        self.WS_MAX_CONNECTIONS_PER_USER = int(os.environ.get("WS_MAX_CONNECTIONS_PER_USER", "10"))

        # Timeouts (seconds)
        self.WS_SEND_TIMEOUT = float(os.environ.get("WS_SEND_TIMEOUT", "5.0"))
        self.WS_HANDLER_TIMEOUT = float(os.environ.get("WS_HANDLER_TIMEOUT", "10.0"))

        # Delay between a user's last session closing and the user being reported offline
        self.WS_PRESENCE_GRACE_SECONDS = float(os.environ.get("WS_PRESENCE_GRACE_SECONDS", "5.0"))

        # "local" keeps fan-out in process, "redis" shares it across instances
        self.WS_PUBSUB_BACKEND = os.environ.get("WS_PUBSUB_BACKEND", "local").lower()

        # "redis" looks tokens up as sessions in Redis, "static" uses WS_STATIC_TOKENS
        self.WS_AUTH_BACKEND = os.environ.get("WS_AUTH_BACKEND", "redis").lower()
        # JSON object: {"<token>": {"user_id": "...", "role": "..."}}
        self.WS_STATIC_TOKENS = json.loads(os.environ.get("WS_STATIC_TOKENS", "{}") or "{}")

        # Store presence records in Redis instead of process memory
        self.WS_PRESENCE_IN_REDIS = _env_bool("WS_PRESENCE_IN_REDIS", "false")

        # Request bounds
        self.NOTIFICATIONS_FETCH_MAX = int(os.environ.get("NOTIFICATIONS_FETCH_MAX", "100"))
        self.ACTIVITIES_PAGE_MAX = int(os.environ.get("ACTIVITIES_PAGE_MAX", "100"))

        # Shared secret for backend services publishing through /internal/*
        self.INTERNAL_SHARED_SECRET = os.environ.get("INTERNAL_SHARED_SECRET", None)

    def __new__(cls):
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super(BackendSettings, cls).__new__(cls)
        return cls._instance

settings = BackendSettings()
