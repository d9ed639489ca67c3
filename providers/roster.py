"""
Project roster: which repository a project tracks and who is on its team.

The roster store is owned by the wider management application; this module
defines the interface the sync needs from it and a YAML-file implementation
for running the sync standalone.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set, Tuple

import yaml

logger = logging.getLogger(__name__)


class RosterError(Exception):
    """Raised when the roster source cannot be read."""


@dataclass(frozen=True)
class TeamMember:
    github_username: Optional[str] = None
    email: Optional[str] = None
    email_aliases: Tuple[str, ...] = field(default_factory=tuple)
    gitlab_username: Optional[str] = None


@dataclass(frozen=True)
class ProjectEntry:
    id: str
    name: Optional[str] = None
    repo_url: Optional[str] = None
    members: Tuple[TeamMember, ...] = field(default_factory=tuple)


def team_usernames(members: Iterable[TeamMember]) -> Set[str]:
    """GitHub usernames of the given members, ignoring members without one."""
    return {m.github_username for m in members if m.github_username}


class ProjectDirectory:
    """Interface to the project/roster store."""

    async def get_repo_url(self, project_id: str) -> Optional[str]:
        raise NotImplementedError

    async def list_projects_with_repo(self) -> List[str]:
        raise NotImplementedError

    async def get_team_members(self, project_id: str) -> List[TeamMember]:
        raise NotImplementedError


def _parse_member(raw: Dict) -> TeamMember:
    aliases = raw.get("email_aliases") or []
    if isinstance(aliases, str):
        aliases = [aliases]
    return TeamMember(
        github_username=raw.get("github_username") or None,
        email=raw.get("email") or None,
        email_aliases=tuple(aliases),
        gitlab_username=raw.get("gitlab_username") or None,
    )


class YamlProjectDirectory(ProjectDirectory):
    """
    Roster backed by a YAML file of the form::

        projects:
          - id: platform
            repo_url: https://github.com/acme/platform
            members:
              - github_username: alice
                email: alice@acme.io
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self.projects = self._load(self.path)

    @staticmethod
    def _load(path: Path) -> Dict[str, ProjectEntry]:
        if not path.exists():
            raise RosterError(f"Roster file not found: {path}")
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise RosterError(f"Invalid roster file {path}: {e}") from e

        projects: Dict[str, ProjectEntry] = {}
        for raw in data.get("projects") or []:
            project_id = raw.get("id")
            if not project_id:
                logger.warning(f"Skipping roster project without an id in {path}")
                continue
            projects[str(project_id)] = ProjectEntry(
                id=str(project_id),
                name=raw.get("name"),
                repo_url=raw.get("repo_url") or None,
                members=tuple(_parse_member(m) for m in raw.get("members") or []),
            )

        logger.debug(f"Loaded {len(projects)} projects from {path}")
        return projects

    async def get_repo_url(self, project_id: str) -> Optional[str]:
        project = self.projects.get(project_id)
        return project.repo_url if project else None

    async def list_projects_with_repo(self) -> List[str]:
        return [p.id for p in self.projects.values() if p.repo_url]

    async def get_team_members(self, project_id: str) -> List[TeamMember]:
        project = self.projects.get(project_id)
        return list(project.members) if project else []

    def get_project(self, project_id: str) -> Optional[ProjectEntry]:
        return self.projects.get(project_id)
