# src/kanbot/connectors/matrix_client.py

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass
from pathlib import Path

from nio import AsyncClient, AsyncClientConfig, LoginResponse

logger = logging.getLogger(__name__)

try:
    import olm  # type: ignore  # noqa: F401

    OLM_AVAILABLE = True
except Exception:
    OLM_AVAILABLE = False

SESSION_FILE_NAME = "session.json"


@dataclass(slots=True, frozen=True)
class MatrixSession:
    """Access token + device id persisted between restarts (sensitive, never commit)."""

    access_token: str
    user_id: str
    device_id: str

    @classmethod
    def load(cls, path: Path) -> MatrixSession:
        data = json.loads(path.read_text("utf-8"))
        if not isinstance(data, dict):
            raise ValueError("Expected JSON object")
        values = {k: str(data.get(k) or "").strip() for k in ("access_token", "user_id", "device_id")}
        missing = [k for k, v in values.items() if not v]
        if missing:
            raise ValueError(f"{path.name} is missing: {', '.join(missing)}")
        return cls(**values)

    def save(self, path: Path) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(".tmp")
        tmp.write_text(json.dumps(asdict(self), ensure_ascii=False), "utf-8")
        os.replace(tmp, path)
        try:
            os.chmod(path, 0o600)
        except OSError:
            logger.debug("chmod 600 failed for %s", path)

    def apply(self, client: AsyncClient) -> None:
        client.access_token = self.access_token
        client.user_id = self.user_id
        client.device_id = self.device_id


def _build_client(homeserver: str, user_id: str, store_dir: Path) -> AsyncClient:
    config = AsyncClientConfig(
        encryption_enabled=OLM_AVAILABLE,
        store_sync_tokens=True,
    )
    return AsyncClient(
        homeserver,
        user_id,
        store_path=str(store_dir) if OLM_AVAILABLE else None,
        config=config,
    )


async def create_matrix_client(settings) -> AsyncClient | None:
    """
    Create a logged-in Matrix AsyncClient for the bot account.

    Restores session.json from matrix_store_path when present; otherwise logs
    in with the password once and writes a new session.json. Returns None when
    Matrix is not configured or login fails.
    """
    homeserver = (getattr(settings, "matrix_homeserver", "") or "").strip()
    user_id = (getattr(settings, "matrix_user_id", "") or "").strip()
    password = (getattr(settings, "matrix_password", "") or "").strip()
    store_dir = Path(getattr(settings, "matrix_store_path", Path(".local/kanbot/matrix_store")))

    if not homeserver or not user_id:
        logger.error("Matrix is not configured: set KANBOT_MATRIX_HOMESERVER and KANBOT_MATRIX_USER_ID")
        return None

    store_dir.mkdir(parents=True, exist_ok=True)
    session_file = store_dir / SESSION_FILE_NAME

    if OLM_AVAILABLE:
        logger.info("python-olm detected: encrypted rooms supported")
    else:
        logger.warning("python-olm not installed: encrypted rooms unsupported")

    client = _build_client(homeserver, user_id, store_dir)

    if session_file.exists():
        try:
            session = MatrixSession.load(session_file)
        except (OSError, ValueError) as e:
            logger.warning("Failed to restore Matrix %s, will try password login: %r", SESSION_FILE_NAME, e)
        else:
            session.apply(client)
            if OLM_AVAILABLE:
                try:
                    client.load_store()
                except Exception as e:
                    logger.warning("Failed to load encryption store: %r", e)
            logger.info("Matrix session restored for %s", client.user_id)
            return client

    if not password:
        logger.error(
            "Matrix %s not found and password is not set. "
            "Set KANBOT_MATRIX_PASSWORD once to bootstrap a session.",
            SESSION_FILE_NAME,
        )
        return None

    device_name = f"{getattr(settings, 'app_name', 'kanbot')} reminders"
    logger.info("Logging in to Matrix (device_name=%r)...", device_name)

    resp = await client.login(password=password, device_name=device_name)
    if not isinstance(resp, LoginResponse):
        logger.error("Matrix login failed: %r", resp)
        await client.close()
        return None

    session = MatrixSession(access_token=resp.access_token, user_id=resp.user_id, device_id=resp.device_id)
    try:
        session.save(session_file)
        logger.info("Matrix session saved to %s (user=%s)", session_file, resp.user_id)
    except OSError as e:
        # The client is logged in; only the next restart will need the password again.
        logger.error("Failed to write Matrix %s (%s): %r", SESSION_FILE_NAME, session_file, e)

    return client
