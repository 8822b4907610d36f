"""Runtime configuration."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Final, Mapping

DEFAULT_STORAGE_PATH: Final[str] = "crossed_paths_cache.json"

ENV_URL: Final[str] = "CROSSED_PATHS_URL"
ENV_API_KEY: Final[str] = "CROSSED_PATHS_API_KEY"
ENV_ACCESS_TOKEN: Final[str] = "CROSSED_PATHS_ACCESS_TOKEN"


@dataclass(frozen=True, slots=True)
class RemoteConfig:
    """Connection settings for a PostgREST-compatible backend."""

    base_url: str
    api_key: str = ""
    # User JWT; the routines resolve "the calling identity" from it.
    access_token: str = ""
    timeout_seconds: float = 20.0
    schema: str = "public"
    user_agent: str = "crossed-paths/0.1.0"

    @property
    def rest_url(self) -> str:
        return f"{self.base_url.rstrip('/')}/rest/v1"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> RemoteConfig | None:
        """Build from ``CROSSED_PATHS_*`` variables; None when no URL is set."""

        env = os.environ if environ is None else environ
        url = env.get(ENV_URL, "").strip()
        if not url:
            return None
        return cls(
            base_url=url,
            api_key=env.get(ENV_API_KEY, "").strip(),
            access_token=env.get(ENV_ACCESS_TOKEN, "").strip(),
        )
