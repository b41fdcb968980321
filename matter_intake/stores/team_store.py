"""
Team configuration lookup.

``TeamConfigStore`` reads team documents (services and webhook settings)
from a JSON file; ``TeamConfigCache`` wraps it with a TTL so each turn
does not re-read configuration. The cache is an explicit object handed to
the services that need it.
"""

import json
import logging
import time
from pathlib import Path
from typing import Callable, Iterable, Optional, Union

from matter_intake.config import settings
from matter_intake.schemas.team_schema import TeamConfig

logger = logging.getLogger(__name__)


class TeamConfigStore:
    """Read-only team configuration, addressable by id or slug."""

    def __init__(self, teams: Iterable[TeamConfig] = ()) -> None:
        self._teams: dict[str, TeamConfig] = {}
        for team in teams:
            self.add(team)

    @classmethod
    def from_file(cls, path: Union[str, Path, None] = None) -> "TeamConfigStore":
        """
        Load teams from a JSON document.

        Accepts either a list of team objects or ``{"teams": [...]}``.
        A missing file yields an empty store.
        """
        path = Path(path or settings.teams.teams_file)
        if not path.exists():
            logger.warning("Teams file %s not found, starting with no teams", path)
            return cls()
        data = json.loads(path.read_text(encoding="utf-8"))
        if isinstance(data, dict):
            data = data.get("teams", [])
        teams = [TeamConfig.model_validate(item) for item in data]
        logger.info("Loaded %d team(s) from %s", len(teams), path)
        return cls(teams)

    def add(self, team: TeamConfig) -> None:
        self._teams[team.id] = team

    async def get(self, team_id: str) -> Optional[TeamConfig]:
        team = self._teams.get(team_id)
        if team is not None:
            return team
        for candidate in self._teams.values():
            if candidate.slug and candidate.slug == team_id:
                return candidate
        return None

    def __len__(self) -> int:
        return len(self._teams)


class TeamConfigCache:
    """TTL cache in front of a ``TeamConfigStore``.

    Only hits are cached. Concurrent misses may both load from the store,
    which is harmless since the configuration is read-only.
    """

    def __init__(
        self,
        store: TeamConfigStore,
        ttl_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.store = store
        self.ttl_seconds = (
            settings.teams.cache_ttl_seconds if ttl_seconds is None else ttl_seconds
        )
        self._clock = clock
        self._entries: dict[str, tuple[TeamConfig, float]] = {}

    async def get(self, team_id: str) -> Optional[TeamConfig]:
        entry = self._entries.get(team_id)
        if entry is not None and self._clock() < entry[1]:
            return entry[0]

        team = await self.store.get(team_id)
        if team is not None:
            self._entries[team_id] = (team, self._clock() + self.ttl_seconds)
        else:
            self._entries.pop(team_id, None)
        return team

    def clear(self, team_id: Optional[str] = None) -> None:
        """Forget one team's cached config, or every entry when no id is given."""
        if team_id is None:
            self._entries.clear()
            logger.info("Cleared team config cache")
        else:
            self._entries.pop(team_id, None)
            logger.info("Cleared team config cache for %s", team_id)

    def __contains__(self, team_id: str) -> bool:
        entry = self._entries.get(team_id)
        return entry is not None and self._clock() < entry[1]
