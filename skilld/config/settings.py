"""Configuration settings for skilld."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

DEFAULT_HOME = "~/.skilld"
CONFIG_FILENAME = "config.yaml"


@dataclass
class CacheConfig:
    """Reference cache location."""

    root: str = DEFAULT_HOME


@dataclass
class FeaturesConfig:
    """Optional resources fetched next to the docs."""

    issues: bool = True
    discussions: bool = True
    releases: bool = True
    search: bool = True


@dataclass
class SyncConfig:
    """Parallel sync behavior."""

    concurrency: int = 5
    batch_size: int = 20  # Git doc downloads per batch
    skills_dir: str = ".claude/skills"
    generator: str = "skilld"


@dataclass
class IndexConfig:
    """Search index configuration.

    Embeddings come from a local Ollama server; vectors are stored in one
    chromadb database per package version.
    """

    ollama_url: str = "http://localhost:11434"
    embedding_model: str = "nomic-embed-text"
    chunk_size: int = 1000
    chunk_overlap: int = 200
    timeout: int = 120


@dataclass
class GitHubConfig:
    """GitHub API access."""

    token: str = ""
    timeout: float = 15.0


@dataclass
class Settings:
    """Main settings configuration."""

    cache: CacheConfig = field(default_factory=CacheConfig)
    features: FeaturesConfig = field(default_factory=FeaturesConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    index: IndexConfig = field(default_factory=IndexConfig)
    github: GitHubConfig = field(default_factory=GitHubConfig)

    @property
    def cache_root(self) -> Path:
        """Cache root, with ``SKILLD_HOME`` taking precedence."""
        return Path(os.environ.get("SKILLD_HOME") or self.cache.root).expanduser()

    @property
    def github_token(self) -> Optional[str]:
        return self.github.token or os.environ.get("GITHUB_TOKEN") or None

    @classmethod
    def from_yaml(cls, yaml_path: str) -> "Settings":
        """Load settings from YAML file with environment variable expansion."""
        with open(yaml_path, "r") as f:
            data = yaml.safe_load(f) or {}

        # Expand environment variables
        data = cls._expand_env_vars(data)

        return cls(
            cache=CacheConfig(**data.get("cache", {})),
            features=FeaturesConfig(**data.get("features", {})),
            sync=SyncConfig(**data.get("sync", {})),
            index=IndexConfig(**data.get("index", {})),
            github=GitHubConfig(**data.get("github", {})),
        )

    @staticmethod
    def _expand_env_vars(data: Any) -> Any:
        """Recursively expand environment variables in configuration."""
        if isinstance(data, dict):
            return {k: Settings._expand_env_vars(v) for k, v in data.items()}
        elif isinstance(data, list):
            return [Settings._expand_env_vars(item) for item in data]
        elif isinstance(data, str) and data.startswith("${") and data.endswith("}"):
            env_var = data[2:-1]
            return os.environ.get(env_var, "")
        return data

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cache": vars(self.cache).copy(),
            "features": vars(self.features).copy(),
            "sync": vars(self.sync).copy(),
            "index": vars(self.index).copy(),
            "github": {"timeout": self.github.timeout},
        }


def default_config_path() -> Path:
    return Path(os.environ.get("SKILLD_HOME") or DEFAULT_HOME).expanduser() / CONFIG_FILENAME


def load_settings(config_path: Optional[str] = None) -> Settings:
    """Load settings from configuration file, or defaults when it is missing."""
    path = Path(config_path) if config_path else default_config_path()
    if not path.exists():
        return Settings()
    return Settings.from_yaml(str(path))
