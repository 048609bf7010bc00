from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from career_match.errors import ConfigurationError
from career_match.extraction.profiles import ProfileRegistry, PatternProfile
from career_match.skills import AliasTable, SkillNormalizer, default_alias_table


DEFAULT_USER_AGENT = "career-match/0.1 (+job discovery)"


class PipelineConfig(BaseModel):
    # Worker pool
    concurrency: int = Field(default=8, gt=0)
    per_domain_concurrency: int = Field(default=2, gt=0)

    # Timeouts (seconds)
    fetch_timeout: float = Field(default=15.0, gt=0)
    extract_timeout: float = Field(default=10.0, gt=0)

    # Retries after the first attempt
    retry_limit: int = Field(default=3, ge=0)
    backoff_base: float = Field(default=0.5, ge=0)
    backoff_max: float = Field(default=30.0, ge=0)

    # Skills
    alias_table: Optional[Dict[str, Any]] = None
    alias_table_path: Optional[str] = None
    protected_skills: List[str] = Field(default_factory=list)
    skill_frequency_table: Dict[str, int] = Field(default_factory=dict)

    # Extraction
    site_profiles: Dict[str, PatternProfile] = Field(default_factory=dict)
    partner_ats_domains: List[str] = Field(default_factory=list)
    client_rendered_threshold: int = Field(default=50_000, ge=0)

    user_agent: str = DEFAULT_USER_AGENT

    @field_validator("site_profiles")
    @classmethod
    def _domains_lowercase(cls, v: Dict[str, PatternProfile]) -> Dict[str, PatternProfile]:
        out = {}
        for domain, profile in v.items():
            d = domain.strip().lower()
            if not d:
                raise ValueError("site_profiles keys must be non-empty domains")
            out[d] = profile
        return out

    @field_validator("skill_frequency_table")
    @classmethod
    def _counts_non_negative(cls, v: Dict[str, int]) -> Dict[str, int]:
        bad = sorted(k for k, n in v.items() if n < 0)
        if bad:
            raise ValueError(f"skill_frequency_table counts must be >= 0 (got negative for {bad})")
        return v


def _format_errors(e: ValidationError) -> str:
    parts = []
    for err in e.errors():
        loc = ".".join(str(x) for x in err.get("loc", ())) or "<root>"
        parts.append(f"{loc}: {err.get('msg')}")
    return "; ".join(parts)


def validate_config(raw: Union[PipelineConfig, Mapping[str, Any], None]) -> PipelineConfig:
    """Accepts a PipelineConfig, a plain mapping, or None (all defaults)."""
    if isinstance(raw, PipelineConfig):
        # Re-validate: model_copy/model_construct can bypass field checks.
        raw = raw.model_dump()
    if raw is None:
        raw = {}
    if not isinstance(raw, Mapping):
        raise ConfigurationError(f"Config must be a mapping (dict). Got: {type(raw).__name__}")
    try:
        cfg = PipelineConfig(**dict(raw))
    except ValidationError as e:
        raise ConfigurationError(f"Invalid pipeline config: {_format_errors(e)}") from e

    if cfg.backoff_max < cfg.backoff_base:
        raise ConfigurationError(
            f"backoff_max ({cfg.backoff_max}) must be >= backoff_base ({cfg.backoff_base})"
        )
    if cfg.alias_table is not None and cfg.alias_table_path:
        raise ConfigurationError("Set only one of alias_table and alias_table_path")
    return cfg


def load_config(path: str) -> PipelineConfig:
    p = Path(path).expanduser()
    if not p.exists():
        raise ConfigurationError(f"Config not found: {p}")
    try:
        with p.open("r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Config {p} is not valid YAML: {e}") from e

    if not isinstance(raw, dict):
        raise ConfigurationError(f"Config must be a YAML mapping (dict). Got: {type(raw).__name__}")

    # A relative alias table path is taken relative to the config file.
    alias_path = raw.get("alias_table_path")
    if isinstance(alias_path, str) and alias_path and not Path(alias_path).expanduser().is_absolute():
        raw["alias_table_path"] = str(p.parent / alias_path)

    return validate_config(raw)


def build_alias_table(cfg: PipelineConfig) -> AliasTable:
    if cfg.alias_table is not None:
        return AliasTable.from_mapping(cfg.alias_table)
    if cfg.alias_table_path:
        return AliasTable.from_yaml(cfg.alias_table_path)
    return default_alias_table()


def build_normalizer(cfg: PipelineConfig) -> SkillNormalizer:
    return SkillNormalizer(build_alias_table(cfg), extra_protected=cfg.protected_skills)


def build_registry(cfg: PipelineConfig) -> ProfileRegistry:
    return ProfileRegistry(cfg.site_profiles, partner_domains=cfg.partner_ats_domains)
