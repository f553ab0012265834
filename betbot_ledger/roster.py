"""Roster sources — the external, authoritative member lists.

The reconciler only needs an async iterable of RosterEntry. ``DiscordRoster``
enumerates guild members over the Discord REST API; ``StaticRoster`` serves
a fixed list (tests, one-off imports).
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, AsyncIterator, Iterable, Protocol

import aiohttp

from .errors import RosterUnavailableError

if TYPE_CHECKING:
    from .config import DiscordConfig


@dataclass(frozen=True)
class RosterEntry:
    external_id: str
    display_name: str
    is_bot: bool = False


@dataclass(frozen=True)
class GroupFailure:
    """A guild whose member listing failed part-way."""

    group_id: str
    group_name: str
    error: str


class RosterSource(Protocol):
    group_failures: list[GroupFailure]

    def entries(self) -> AsyncIterator[RosterEntry]: ...


class StaticRoster:
    """In-memory roster."""

    def __init__(self, entries: Iterable[RosterEntry]) -> None:
        self._entries = list(entries)
        self.group_failures: list[GroupFailure] = []

    async def entries(self) -> AsyncIterator[RosterEntry]:
        for entry in self._entries:
            yield entry


class DiscordRoster:
    """Guild members of every guild the bot token can see."""

    GUILD_PAGE_SIZE = 200

    def __init__(self, config: DiscordConfig, logger: logging.Logger) -> None:
        self._config = config
        self._logger = logger
        self._session: aiohttp.ClientSession | None = None
        self.group_failures: list[GroupFailure] = []

    async def start(self) -> None:
        """Create the HTTP session."""
        if not self._config.token:
            raise RosterUnavailableError("Discord token not configured (discord.token)")
        self._session = aiohttp.ClientSession(
            headers={"Authorization": f"Bot {self._config.token}"},
            timeout=aiohttp.ClientTimeout(total=self._config.request_timeout_seconds),
        )

    async def stop(self) -> None:
        """Close the HTTP session."""
        if self._session:
            await self._session.close()
            self._session = None

    async def __aenter__(self) -> DiscordRoster:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.stop()

    # ══════════════════════════════════════════════════════════
    #  Enumeration
    # ══════════════════════════════════════════════════════════

    async def entries(self) -> AsyncIterator[RosterEntry]:
        """All members of all selected guilds, guild by guild.

        A member of several guilds is yielded once, from the first guild that
        lists them. A guild whose listing fails is recorded in
        ``group_failures`` and skipped; failing to list the guilds at all is
        fatal.
        """
        self.group_failures = []
        seen: set[str] = set()
        guilds = await self.list_guilds()
        self._logger.info("Enumerating members of %d guild(s)", len(guilds))

        for guild in guilds:
            guild_id = str(guild["id"])
            guild_name = guild.get("name", guild_id)
            count = 0
            try:
                async for entry in self.iter_members(guild_id):
                    count += 1
                    if entry.external_id in seen:
                        continue
                    seen.add(entry.external_id)
                    yield entry
            except (aiohttp.ClientError, asyncio.TimeoutError, KeyError, ValueError) as e:
                self._logger.error(
                    "Error fetching members from guild %s (%s): %s", guild_name, guild_id, e
                )
                self.group_failures.append(GroupFailure(guild_id, guild_name, str(e) or type(e).__name__))
                continue
            self._logger.info("Found %d members in %s", count, guild_name)

    async def list_guilds(self) -> list[dict]:
        """Guilds the bot is in, narrowed to ``discord.guild_ids`` when set."""
        guilds: list[dict] = []
        after = "0"
        try:
            while True:
                page = await self._get_json(
                    "/users/@me/guilds", {"limit": self.GUILD_PAGE_SIZE, "after": after}
                )
                guilds.extend(page)
                if len(page) < self.GUILD_PAGE_SIZE:
                    break
                after = str(page[-1]["id"])
        except (aiohttp.ClientError, asyncio.TimeoutError, KeyError, ValueError) as e:
            raise RosterUnavailableError(f"Cannot list Discord guilds: {e}") from e

        wanted = set(self._config.guild_ids)
        if not wanted:
            return guilds
        selected = [g for g in guilds if str(g["id"]) in wanted]
        missing = wanted - {str(g["id"]) for g in selected}
        for guild_id in sorted(missing):
            self._logger.warning("Configured guild %s is not visible to the bot", guild_id)
            self.group_failures.append(GroupFailure(guild_id, guild_id, "guild not visible to bot"))
        return selected

    async def iter_members(self, guild_id: str) -> AsyncIterator[RosterEntry]:
        """Page through /guilds/{id}/members ordered by user id."""
        page_size = self._config.page_size
        after = "0"
        while True:
            page = await self._get_json(
                f"/guilds/{guild_id}/members", {"limit": page_size, "after": after}
            )
            for member in page:
                yield self._to_entry(member)
            if len(page) < page_size:
                return
            after = str(page[-1]["user"]["id"])

    # ══════════════════════════════════════════════════════════
    #  Internal Helpers
    # ══════════════════════════════════════════════════════════

    async def _get_json(self, path: str, params: dict[str, Any]) -> Any:
        """GET with rate-limit retries. Raises aiohttp errors on failure."""
        if not self._session:
            raise RosterUnavailableError("Discord roster not started")

        url = f"{self._config.api_base.rstrip('/')}{path}"
        attempt = 0
        while True:
            async with self._session.get(url, params=params) as resp:
                if resp.status == 429 and attempt < self._config.max_retries:
                    attempt += 1
                    data = await resp.json()
                    delay = float(data.get("retry_after", 1.0))
                    self._logger.warning("Rate limited on %s, retry %d in %.2fs", path, attempt, delay)
                    await asyncio.sleep(delay)
                    continue
                resp.raise_for_status()
                return await resp.json()

    @staticmethod
    def _to_entry(member: dict) -> RosterEntry:
        user = member["user"]
        name = member.get("nick") or user.get("global_name") or user["username"]
        return RosterEntry(
            external_id=str(user["id"]),
            display_name=name,
            is_bot=bool(user.get("bot", False)),
        )
