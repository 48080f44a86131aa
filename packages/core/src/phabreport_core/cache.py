"""Run-scoped memoization of users and repositories.

Reviewers repeat heavily across one author's revisions, so each user and
repository is looked up once per run. Concurrent first requests for the same
key share a single in-flight lookup: the first caller installs a future and
everyone else awaits it.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Generic, Hashable, TypeVar

from phabreport_core.models import Repository, User

logger = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class SingleFlightCache(Generic[K, V]):
    """Memoize an async loader with at most one in-flight call per key.

    A resolved value (including ``None``) is kept for the lifetime of the
    cache. A failed lookup is not cached: the error reaches every caller that
    was waiting on it and the next ``get`` starts a fresh lookup.
    """

    def __init__(self, loader: Callable[[K], Awaitable[V]], name: str = "cache"):
        self._loader = loader
        self._name = name
        self._values: dict[K, V] = {}
        self._pending: dict[K, asyncio.Future] = {}

    def __contains__(self, key: K) -> bool:
        return key in self._values

    def __len__(self) -> int:
        return len(self._values)

    def seed(self, key: K, value: V) -> None:
        """Store a value obtained elsewhere so it is never looked up."""
        self._values[key] = value

    async def get(self, key: K) -> V:
        if key in self._values:
            return self._values[key]

        pending = self._pending.get(key)
        if pending is not None:
            logger.debug("%s: joining in-flight lookup for %s", self._name, key)
            # shield() so a cancelled waiter does not cancel the shared lookup.
            return await asyncio.shield(pending)

        future = asyncio.get_running_loop().create_future()
        self._pending[key] = future
        try:
            value = await self._loader(key)
        except BaseException as e:
            del self._pending[key]
            if isinstance(e, asyncio.CancelledError):
                future.cancel()
            else:
                future.set_exception(e)
                # Mark retrieved so an unawaited future does not log a warning.
                future.exception()
            raise

        self._values[key] = value
        del self._pending[key]
        future.set_result(value)
        return value


class EntityCache:
    """Users and repositories for one report run."""

    def __init__(self, client: Any):
        self._client = client
        self.users: SingleFlightCache[str, User | None] = SingleFlightCache(self._load_user, name="users")
        self.repos: SingleFlightCache[str, Repository | None] = SingleFlightCache(self._load_repo, name="repos")

    async def _load_user(self, phid: str) -> User | None:
        result = await self._client.query_users([phid])
        if not result:
            logger.warning("No user found for %s", phid)
            return None
        return User.from_api(result[0])

    async def _load_repo(self, phid: str) -> Repository | None:
        result = await self._client.query_repositories([phid])
        if not result:
            logger.info("No repository found for %s", phid)
            return None
        return Repository.from_api(result[0])

    def seed_user(self, user: User) -> None:
        self.users.seed(user.phid, user)

    async def get_user(self, phid: str) -> User | None:
        return await self.users.get(phid)

    async def get_repo(self, phid: str | None) -> Repository | None:
        if not phid:
            return None
        return await self.repos.get(phid)
