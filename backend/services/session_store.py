"""Session store for multi-turn conversation history.

History is kept as a JSON-serialized list of turns under ``session:<id>`` in a
key-value backend. Appends are read-modify-write, so writes to the same session
are serialized through a per-session ``asyncio.Lock``. The lock map only covers
a single process; deployments running several workers against one backend need
an atomic append primitive in the backend instead.

Backend calls are bounded by ``asyncio.wait_for``, but the Supabase backend runs
its requests in worker threads that a timeout cannot stop. A write reported as
``StoreUnavailable`` after a timeout may therefore still reach the table.
"""
import asyncio
import json
import logging
import time
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol

from supabase import create_client, Client

from models.session import Role, Turn
from services.errors import SessionNotFound, StoreUnavailable
from config import (
    SUPABASE_URL,
    SUPABASE_KEY,
    SESSION_TABLE,
    SESSION_TTL_SECONDS,
    STORE_TIMEOUT_SECONDS,
)

logger = logging.getLogger(__name__)

STAGE = "persisting"


class KeyValueBackend(Protocol):
    """String-keyed storage used by the session store."""

    async def connect(self) -> None: ...

    async def close(self) -> None: ...

    async def get(self, key: str) -> Optional[str]: ...

    async def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None: ...

    async def delete(self, key: str) -> bool: ...


class InMemoryKeyValueBackend:
    """Process-local backend for tests and local development."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._data: Dict[str, str] = {}
        self._expires_at: Dict[str, float] = {}

    async def connect(self) -> None:
        logger.info("InMemoryKeyValueBackend ready")

    async def close(self) -> None:
        self._data.clear()
        self._expires_at.clear()

    async def get(self, key: str) -> Optional[str]:
        # Yield like a network round-trip would
        await asyncio.sleep(0)
        if self._is_expired(key):
            self._evict(key)
            return None
        return self._data.get(key)

    async def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        await asyncio.sleep(0)
        self._data[key] = value
        if ttl_seconds is not None:
            self._expires_at[key] = self._clock() + ttl_seconds
        else:
            self._expires_at.pop(key, None)

    async def delete(self, key: str) -> bool:
        await asyncio.sleep(0)
        if self._is_expired(key):
            self._evict(key)
            return False
        existed = key in self._data
        self._evict(key)
        return existed

    def _is_expired(self, key: str) -> bool:
        expires_at = self._expires_at.get(key)
        return expires_at is not None and self._clock() >= expires_at

    def _evict(self, key: str) -> None:
        self._data.pop(key, None)
        self._expires_at.pop(key, None)


class SupabaseKeyValueBackend:
    """Key-value backend on a Supabase table (see migrations/001_create_session_store.sql)."""

    def __init__(
        self,
        supabase_url: Optional[str] = SUPABASE_URL,
        supabase_key: Optional[str] = SUPABASE_KEY,
        table_name: str = SESSION_TABLE
    ):
        """
        Args:
            supabase_url: Supabase project URL
            supabase_key: Supabase API key
            table_name: Table with ``key``, ``value`` and ``expires_at`` columns

        Raises:
            ValueError: If Supabase credentials are missing
        """
        if not supabase_url or not supabase_key:
            raise ValueError("SUPABASE_URL and SUPABASE_KEY must be set in environment variables")

        self.supabase_url = supabase_url
        self.supabase_key = supabase_key
        self.table_name = table_name
        self.client: Optional[Client] = None

    async def connect(self) -> None:
        if self.client is None:
            self.client = await asyncio.to_thread(
                create_client, self.supabase_url, self.supabase_key
            )
            logger.info(f"Connected to Supabase table: {self.table_name}")

    async def close(self) -> None:
        self.client = None

    async def get(self, key: str) -> Optional[str]:
        result = await asyncio.to_thread(
            lambda: self._table().select("value, expires_at").eq("key", key).execute()
        )
        if not result.data:
            return None

        row = result.data[0]
        if self._is_expired(row):
            await self.delete(key)
            return None
        return row["value"]

    async def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        expires_at = None
        if ttl_seconds is not None:
            expires_at = (datetime.now(timezone.utc) + timedelta(seconds=ttl_seconds)).isoformat()

        await asyncio.to_thread(
            lambda: self._table().upsert({
                "key": key,
                "value": value,
                "expires_at": expires_at
            }).execute()
        )

    async def delete(self, key: str) -> bool:
        result = await asyncio.to_thread(
            lambda: self._table().delete().eq("key", key).execute()
        )
        # An expired row is removed but counts as absent, as in get
        return any(not self._is_expired(row) for row in result.data or [])

    def _table(self):
        if self.client is None:
            raise RuntimeError("SupabaseKeyValueBackend is not connected")
        return self.client.table(self.table_name)

    @classmethod
    def _is_expired(cls, row: Dict[str, Any]) -> bool:
        expires_at = row.get("expires_at")
        return bool(expires_at) and cls._parse_timestamp(expires_at) <= datetime.now(timezone.utc)

    @staticmethod
    def _parse_timestamp(timestamp_str: str) -> datetime:
        """Parse a Supabase timestamptz, which may use a trailing 'Z'."""
        parsed = datetime.fromisoformat(timestamp_str.replace("Z", "+00:00"))
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed


class SessionStore:
    """Manages conversation history for sessions on top of a key-value backend."""

    def __init__(
        self,
        backend: KeyValueBackend,
        ttl_seconds: Optional[int] = SESSION_TTL_SECONDS,
        timeout: float = STORE_TIMEOUT_SECONDS,
        key_prefix: str = "session:"
    ):
        """
        Initialize the session store.

        Args:
            backend: Key-value backend holding serialized histories
            ttl_seconds: Retention per session, refreshed on every write;
                None keeps sessions until cleared
            timeout: Upper bound in seconds for each backend call
            key_prefix: Prefix for backend keys
        """
        self.backend = backend
        self.ttl_seconds = ttl_seconds
        self.timeout = timeout
        self.key_prefix = key_prefix
        # session_id -> [lock, number of coroutines holding or waiting on it]
        self._locks: Dict[str, List[Any]] = {}

    async def connect(self) -> None:
        await self._call(self.backend.connect(), "connect")
        logger.info("SessionStore connected")

    async def close(self) -> None:
        await self._call(self.backend.close(), "close")
        logger.info("SessionStore closed")

    async def create(self) -> str:
        """
        Create an empty session.

        Returns:
            The new session id
        """
        session_id = self._generate_session_id()
        await self._write(session_id, [])
        logger.info(f"Created session: {session_id}", extra={"session_id": session_id})
        return session_id

    async def append(self, session_id: str, user_text: str, bot_text: str) -> None:
        """
        Append a user/bot turn pair to an existing session.

        Raises:
            SessionNotFound: If the session does not exist (it is not created)
            StoreUnavailable: If the backend fails
        """
        async with self._session_lock(session_id):
            turns = await self._read(session_id)
            if turns is None:
                raise SessionNotFound(f"Session {session_id} not found", stage=STAGE)

            turns.append(Turn(role=Role.USER, text=user_text))
            turns.append(Turn(role=Role.BOT, text=bot_text))
            await self._write(session_id, turns)

        logger.info(
            f"Appended turn pair to session {session_id} ({len(turns)} turns)",
            extra={"session_id": session_id}
        )

    async def fetch(self, session_id: str) -> List[Turn]:
        """
        Return the session's turns in conversation order.

        Raises:
            SessionNotFound: If the session does not exist
        """
        turns = await self._read(session_id)
        if turns is None:
            raise SessionNotFound(f"Session {session_id} not found")
        return turns

    async def clear(self, session_id: str) -> bool:
        """Delete the session. Returns whether it existed."""
        async with self._session_lock(session_id):
            existed = await self._call(self.backend.delete(self._key(session_id)), "delete")
        logger.info(
            f"Cleared session {session_id} (existed={existed})",
            extra={"session_id": session_id}
        )
        return bool(existed)

    async def _read(self, session_id: str) -> Optional[List[Turn]]:
        raw = await self._call(self.backend.get(self._key(session_id)), "get")
        if raw is None:
            return None
        try:
            return [Turn.from_dict(item) for item in json.loads(raw)]
        except (ValueError, KeyError, TypeError) as e:
            logger.error(f"Corrupt history for session {session_id}: {e}")
            raise StoreUnavailable(
                f"Stored history for session {session_id} is unreadable",
                details={"error_type": type(e).__name__}
            ) from e

    async def _write(self, session_id: str, turns: List[Turn]) -> None:
        value = json.dumps([turn.to_dict() for turn in turns])
        await self._call(
            self.backend.set(self._key(session_id), value, self.ttl_seconds),
            "set"
        )

    async def _call(self, operation: Awaitable, name: str):
        """Await a backend operation under the store timeout."""
        try:
            return await asyncio.wait_for(operation, timeout=self.timeout)
        except asyncio.TimeoutError as e:
            logger.error(f"Session backend {name} timed out after {self.timeout}s")
            raise StoreUnavailable(
                f"Session store {name} timed out after {self.timeout}s",
                details={"operation": name}
            ) from e
        except Exception as e:
            logger.error(f"Session backend {name} failed: {e}", exc_info=True)
            raise StoreUnavailable(
                f"Session store {name} failed",
                details={"operation": name, "error_type": type(e).__name__}
            ) from e

    @asynccontextmanager
    async def _session_lock(self, session_id: str):
        entry = self._locks.setdefault(session_id, [asyncio.Lock(), 0])
        entry[1] += 1
        try:
            async with entry[0]:
                yield
        finally:
            entry[1] -= 1
            if entry[1] == 0:
                del self._locks[session_id]

    def _key(self, session_id: str) -> str:
        return f"{self.key_prefix}{session_id}"

    def _generate_session_id(self) -> str:
        return str(uuid.uuid4())
