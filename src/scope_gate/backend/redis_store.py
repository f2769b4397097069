"""Redis-backed permission scope store."""

from datetime import datetime, timezone
from typing import Awaitable, Callable, List, Optional, TypeVar

from loguru import logger
from redis import asyncio as aioredis

from ..config import Config
from ..errors import BackendUnavailable
from ..models import PermissionDefaults, PermissionScope, ScopeModes
from ..paths import normalize_path
from ..redis_client import get_redis_client
from .store import ScopeStore

T = TypeVar("T")


class RedisScopeStore(ScopeStore):
    """
    Scope store persisted in Redis.

    Layout (``{prefix}`` defaults to Config.SCOPE_KEY_PREFIX):
    - ``{prefix}:scope:{id}``: hash with the scope row
    - ``{prefix}:scopes``: set of scope ids
    - ``{prefix}:scopes:by_path``: hash of normalized path -> id
    - ``{prefix}:scope:next_id``: id counter
    - ``{prefix}:defaults``: hash of default modes

    Connection failures surface as BackendUnavailable. Writes are
    last-writer-wins; there is no transaction across read-modify-write.
    """

    def __init__(
        self,
        redis_client: Optional[aioredis.Redis] = None,
        prefix: Optional[str] = None,
    ):
        self._redis_client = redis_client
        self._prefix = prefix or Config.SCOPE_KEY_PREFIX

    async def _get_redis(self) -> aioredis.Redis:
        """Get the injected client or the shared pooled client (lazy)."""
        if self._redis_client is None:
            self._redis_client = await get_redis_client()
        return self._redis_client

    def _scope_key(self, scope_id: int) -> str:
        return f"{self._prefix}:scope:{scope_id}"

    @property
    def _ids_key(self) -> str:
        return f"{self._prefix}:scopes"

    @property
    def _by_path_key(self) -> str:
        return f"{self._prefix}:scopes:by_path"

    @property
    def _counter_key(self) -> str:
        return f"{self._prefix}:scope:next_id"

    @property
    def _defaults_key(self) -> str:
        return f"{self._prefix}:defaults"

    async def _run(self, operation: str, fn: Callable[[aioredis.Redis], Awaitable[T]]) -> T:
        try:
            redis = await self._get_redis()
            return await fn(redis)
        except (aioredis.ConnectionError, aioredis.TimeoutError) as e:
            logger.error(f"Redis connection failed in {operation}: {e}")
            raise BackendUnavailable(f"scope store unavailable during {operation}: {e}") from e

    # ------------------------------------------------------------------
    # ScopeStore
    # ------------------------------------------------------------------

    async def list_scopes(self) -> List[PermissionScope]:
        async def _list(redis: aioredis.Redis) -> List[PermissionScope]:
            ids = sorted(int(value) for value in await redis.smembers(self._ids_key))
            if not ids:
                return []
            pipe = redis.pipeline(transaction=False)
            for scope_id in ids:
                pipe.hgetall(self._scope_key(scope_id))
            rows = await pipe.execute()
            scopes = []
            for scope_id, row in zip(ids, rows):
                if not row:
                    logger.warning(f"Scope {scope_id} indexed but missing; ignoring")
                    continue
                scopes.append(PermissionScope.from_dict(row))
            return scopes

        return await self._run("list_scopes", _list)

    async def get_defaults(self) -> PermissionDefaults:
        async def _get(redis: aioredis.Redis) -> PermissionDefaults:
            return PermissionDefaults.from_dict(await redis.hgetall(self._defaults_key))

        return await self._run("get_defaults", _get)

    async def set_defaults(self, defaults: PermissionDefaults) -> None:
        async def _set(redis: aioredis.Redis) -> None:
            await redis.hset(self._defaults_key, mapping=defaults.to_dict())

        await self._run("set_defaults", _set)
        logger.info(f"Permission defaults set: {defaults.to_dict()}")

    async def upsert_scope(self, directory_path: str, modes: ScopeModes) -> int:
        path = normalize_path(directory_path)
        if not path:
            raise ValueError("directory_path must not be empty")

        async def _upsert(redis: aioredis.Redis) -> int:
            existing = await redis.hget(self._by_path_key, path)
            if existing is not None:
                scope_id = int(existing)
                await redis.hset(self._scope_key(scope_id), mapping=modes.to_dict())
                return scope_id

            scope_id = int(await redis.incr(self._counter_key))
            row = {
                "id": scope_id,
                "directory_path": path,
                "created_at": datetime.now(timezone.utc).isoformat(),
                **modes.to_dict(),
            }
            pipe = redis.pipeline(transaction=True)
            pipe.hset(self._scope_key(scope_id), mapping=row)
            pipe.sadd(self._ids_key, scope_id)
            pipe.hset(self._by_path_key, path, scope_id)
            await pipe.execute()
            return scope_id

        scope_id = await self._run("upsert_scope", _upsert)
        logger.debug(f"Upserted scope {scope_id} at {path}: {modes.to_dict()}")
        return scope_id

    async def update_scope(self, scope_id: int, directory_path: str, modes: ScopeModes) -> None:
        async def _update(redis: aioredis.Redis) -> None:
            key = self._scope_key(scope_id)
            old_path = await redis.hget(key, "directory_path")
            if old_path is None:
                return
            pipe = redis.pipeline(transaction=True)
            pipe.hset(key, mapping={"directory_path": directory_path, **modes.to_dict()})
            if old_path != directory_path:
                pipe.hdel(self._by_path_key, old_path)
            pipe.hset(self._by_path_key, directory_path, scope_id)
            await pipe.execute()

        await self._run("update_scope", _update)

    async def delete_scope(self, scope_id: int) -> int:
        async def _delete(redis: aioredis.Redis) -> int:
            key = self._scope_key(scope_id)
            path = await redis.hget(key, "directory_path")
            pipe = redis.pipeline(transaction=True)
            pipe.delete(key)
            pipe.srem(self._ids_key, scope_id)
            if path is not None:
                pipe.hget(self._by_path_key, path)
            results = await pipe.execute()
            # Only drop the path index if it still points at this row.
            if path is not None and results[-1] is not None and int(results[-1]) == scope_id:
                await redis.hdel(self._by_path_key, path)
            return int(results[0])

        return await self._run("delete_scope", _delete)

    async def close(self) -> None:
        self._redis_client = None
