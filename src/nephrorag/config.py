"""Application configuration defaults."""

from __future__ import annotations

import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Mapping

from nephrorag.errors import ConfigurationError

ENV_PREFIX = "NEPHRORAG_"


@dataclass(slots=True)
class AppConfig:
    db_path: Path = Path("data/nephrorag.db")
    documents_dir: Path = Path("documents")
    local_model_name: str = "sentence-transformers/all-MiniLM-L6-v2"
    remote_model_name: str = "text-embedding-3-small"
    openai_api_key: str | None = None
    chunk_tokens: int = 500
    overlap_tokens: int = 100
    chars_per_token: float = 4.0
    embed_batch_size: int = 50
    remote_batch_delay: float = 0.1
    local_batch_delay: float = 0.01
    insert_batch_size: int = 50
    # Empirically tuned cutoffs; the two models score on different scales.
    remote_min_similarity: float = 0.3
    local_min_similarity: float = 0.05
    top_k: int = 5
    cache_max_size: int = 1000
    cache_ttl_seconds: float = 24 * 60 * 60
    registry_ttl_seconds: float = 5 * 60
    provider_timeout: float = 30.0
    model_load_timeout: float = 300.0

    def resolve_db_path(self, base_dir: Path | None = None) -> Path:
        if Path(self.db_path).is_absolute() or base_dir is None:
            return Path(self.db_path)
        return base_dir / self.db_path

    def batch_delay_for(self, embedding_space: str) -> float:
        return self.local_batch_delay if embedding_space == "local" else self.remote_batch_delay

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "AppConfig":
        """Build a config from ``NEPHRORAG_<FIELD>`` variables and ``OPENAI_API_KEY``."""
        env = os.environ if environ is None else environ
        values: dict[str, object] = {}
        defaults = cls()
        for config_field in fields(cls):
            raw = env.get(ENV_PREFIX + config_field.name.upper())
            if raw is None:
                continue
            current = getattr(defaults, config_field.name)
            try:
                if isinstance(current, Path):
                    values[config_field.name] = Path(raw)
                elif isinstance(current, bool):
                    values[config_field.name] = raw.lower() in {"1", "true", "yes"}
                elif isinstance(current, int):
                    values[config_field.name] = int(raw)
                elif isinstance(current, float):
                    values[config_field.name] = float(raw)
                else:
                    values[config_field.name] = raw
            except ValueError as exc:
                raise ConfigurationError(
                    f"Invalid value for {ENV_PREFIX + config_field.name.upper()}: {raw!r}"
                ) from exc

        if "openai_api_key" not in values and env.get("OPENAI_API_KEY"):
            values["openai_api_key"] = env["OPENAI_API_KEY"]
        return cls(**values)
