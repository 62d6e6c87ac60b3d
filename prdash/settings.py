"""Settings resolution with named profiles, plus write-back of per-profile state."""

import os
from collections.abc import Mapping
from functools import lru_cache
from pathlib import Path

import tomlkit
import typer
from pydantic import SecretStr
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

from prdash.models import ProjectSelector

CONFIG_PATH = Path.home() / ".config" / "prdash" / "config.toml"
DEFAULT_PROFILE = "default"


class PrdashSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="PRDASH_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    profile: str = DEFAULT_PROFILE  # resolved profile name, used for write-back

    # Azure DevOps
    organization: str | None = None
    base_url: str = "https://dev.azure.com"
    pat: SecretStr | None = None
    timeout: float = 30

    # Dashboard state
    projects: list[ProjectSelector] = []
    pinned_authors: list[str] = []
    show_drafts: bool = False

    # Teams review channel for "share to Teams"
    teams_channel_id: str | None = None  # e.g. 19:abc...@thread.tacv2
    teams_channel_name: str = "PR - Reviews"
    teams_group_id: str | None = None
    teams_tenant_id: str | None = None

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # Profile values arrive as init kwargs; env vars and .env override them
        return env_settings, dotenv_settings, init_settings, file_secret_settings

    @property
    def pat_value(self) -> str:
        return self.pat.get_secret_value() if self.pat else ""


@lru_cache(maxsize=1)
def _load_toml() -> tomlkit.TOMLDocument:
    """Load ~/.config/prdash/config.toml, returning empty document if missing."""
    if not CONFIG_PATH.exists():
        return tomlkit.document()
    return tomlkit.load(CONFIG_PATH.open())


def _list_profiles(config: Mapping) -> list[str]:
    # tomlkit Table implements MutableMapping but not dict, so check Mapping
    return [k for k, v in config.items() if isinstance(v, Mapping)]


def _resolve_profile(config: Mapping, profile: str | None) -> str | None:
    """Active profile precedence: --profile, PRDASH_PROFILE, default_profile, first profile."""
    profiles = _list_profiles(config)
    return (
        profile
        or os.environ.get("PRDASH_PROFILE")
        or config.get("default_profile")
        or (profiles[0] if profiles else None)
    )


def get_settings(profile: str | None = None) -> PrdashSettings:
    """Resolve the active profile and return a fully populated PrdashSettings."""
    toml_config = _load_toml()
    active = _resolve_profile(toml_config, profile)

    profile_defaults: dict = {}
    if active:
        if active in toml_config and isinstance(toml_config[active], Mapping):
            profile_defaults = toml_config[active].unwrap()
        elif profile or _list_profiles(toml_config):
            profiles = _list_profiles(toml_config)
            typer.echo(f"Profile '{active}' not found in {CONFIG_PATH}. Available: {profiles or '(none)'}")
            raise typer.Exit(1)

    # profile is pinned after construction so PRDASH_PROFILE cannot redirect write-back
    settings = PrdashSettings(**profile_defaults).model_copy(update={"profile": active or DEFAULT_PROFILE})

    if not settings.organization:
        typer.echo(
            "Missing Azure DevOps organization. Set PRDASH_ORGANIZATION or "
            f"organization in the [{active or DEFAULT_PROFILE}] section of {CONFIG_PATH}, "
            "or run: prdash init"
        )
        raise typer.Exit(1)

    return settings


# ---------------------------------------------------------------------------
# Write-back (round-trip preserves comments and formatting)
# ---------------------------------------------------------------------------


def _load_document() -> tomlkit.TOMLDocument:
    return tomlkit.load(CONFIG_PATH.open()) if CONFIG_PATH.exists() else tomlkit.document()


def _write_profile_value(profile: str, key: str, value: object) -> None:
    doc = _load_document()
    if profile not in doc:
        doc.add(profile, tomlkit.table())
    doc[profile][key] = value
    CONFIG_PATH.parent.mkdir(parents=True, exist_ok=True)
    CONFIG_PATH.write_text(tomlkit.dumps(doc))
    _load_toml.cache_clear()


def _profile_value(profile: str, key: str, default: list) -> list:
    section = _load_document().unwrap().get(profile)
    if isinstance(section, dict):
        return section.get(key, default)
    return default


def save_pat(profile: str, pat: str) -> None:
    _write_profile_value(profile, "pat", pat)


def load_projects(profile: str) -> list[ProjectSelector]:
    return [ProjectSelector(**p) for p in _profile_value(profile, "projects", [])]


def save_projects(profile: str, projects: list[ProjectSelector]) -> None:
    _write_profile_value(profile, "projects", [p.model_dump(exclude_none=True) for p in projects])


def add_project(profile: str, selector: ProjectSelector) -> list[ProjectSelector]:
    projects = load_projects(profile)
    if selector in projects:
        return projects
    projects.append(selector)
    save_projects(profile, projects)
    return projects


def remove_project(profile: str, name: str, repository: str | None = None) -> list[ProjectSelector]:
    """Drop selectors for project ``name`` (only the one for ``repository`` if given)."""
    projects = [
        p for p in load_projects(profile) if not (p.name == name and (repository is None or p.repository == repository))
    ]
    save_projects(profile, projects)
    return projects


def pinned_authors(profile: str) -> list[str]:
    return list(_profile_value(profile, "pinned_authors", []))


def pin_author(profile: str, author: str) -> list[str]:
    authors = pinned_authors(profile)
    if author not in authors:
        authors.append(author)
        _write_profile_value(profile, "pinned_authors", authors)
    return authors


def unpin_author(profile: str, author: str) -> list[str]:
    authors = [a for a in pinned_authors(profile) if a != author]
    _write_profile_value(profile, "pinned_authors", authors)
    return authors


def toggle_pin(profile: str, author: str) -> bool:
    """Pin ``author`` if unpinned, otherwise unpin. Returns the new pinned state."""
    if author in pinned_authors(profile):
        unpin_author(profile, author)
        return False
    pin_author(profile, author)
    return True
