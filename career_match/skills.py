# career_match/skills.py
"""
Skill normalization.

Every skill set the matcher sees passes through here first: free-text tags
from resumes, job boards and third-party feeds are reduced to lowercase,
whitespace-collapsed, alias-resolved tokens. Comparison anywhere else in the
package is plain set arithmetic on these tokens.

The alias table is data (career_match/data/skill_aliases.yaml by default) and
can be replaced from configuration without touching this module.
"""
from __future__ import annotations

import functools
import logging
import re
import threading
from importlib import resources
from pathlib import Path
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple

import yaml

from career_match.errors import ConfigurationError

logger = logging.getLogger(__name__)

_LIST_SEP_RE = re.compile(r",")
_PAIR_SEP_RE = re.compile(r"[/&]")
# Leading dashes are list bullets ("- Python"); trailing ones are left alone.
_EDGE_RE = re.compile(r"^[\s\"'`•·*;:\-–]+|[\s\"'`•·*;:]+$")
_WS_RE = re.compile(r"\s+")
_WORD_CHAR_RE = re.compile(r"[^\W_]")

_DEFAULT_ALIAS_RESOURCE = "data/skill_aliases.yaml"


def clean_token(token: str) -> str:
    """Lowercase, strip edge punctuation/bullets and collapse whitespace."""
    s = _EDGE_RE.sub("", token.lower())
    return _WS_RE.sub(" ", s)


def _is_meaningful(token: str) -> bool:
    return bool(token) and bool(_WORD_CHAR_RE.search(token))


class AliasTable:
    """
    Resolved alias mapping plus the set of tokens that must never be split.

    Chains are flattened on construction so every lookup is one step and
    every canonical value is a fixed point.
    """

    def __init__(
        self,
        aliases: Mapping[str, str],
        protected: Iterable[str] = (),
        related: Optional[Mapping[str, Iterable[str]]] = None,
    ):
        cleaned: Dict[str, str] = {}
        for raw_key, raw_value in (aliases or {}).items():
            if not isinstance(raw_key, str) or not isinstance(raw_value, str):
                raise ConfigurationError(f"Alias entries must be strings: {raw_key!r} -> {raw_value!r}")
            key, value = clean_token(raw_key), clean_token(raw_value)
            if not _is_meaningful(key) or not _is_meaningful(value):
                raise ConfigurationError(f"Empty alias entry: {raw_key!r} -> {raw_value!r}")
            if key != value:
                cleaned[key] = value

        self.aliases: Dict[str, str] = {k: self._resolve(k, cleaned) for k in cleaned}

        protected_set = set()
        for p in protected or ():
            if not isinstance(p, str):
                raise ConfigurationError(f"Protected skills must be strings, got {p!r}")
            p = clean_token(p)
            if _is_meaningful(p):
                protected_set.add(p)
        # Canonical values and alias keys are kept whole as well.
        protected_set.update(self.aliases.values())
        protected_set.update(k for k in self.aliases if _LIST_SEP_RE.search(k) or _PAIR_SEP_RE.search(k))
        self.protected: FrozenSet[str] = frozenset(protected_set)

        rel: Dict[str, FrozenSet[str]] = {}
        for parent, children in (related or {}).items():
            if not isinstance(parent, str) or isinstance(children, str):
                raise ConfigurationError(f"Related skills must map a string to a list: {parent!r}")
            canon = self.canonical(clean_token(parent))
            rel[canon] = frozenset(self.canonical(clean_token(c)) for c in children or () if isinstance(c, str))
        self.related: Dict[str, FrozenSet[str]] = rel

    @staticmethod
    def _resolve(key: str, table: Mapping[str, str]) -> str:
        seen = [key]
        value = table[key]
        while value in table:
            if value in seen:
                chain = " -> ".join(seen + [value])
                raise ConfigurationError(f"Alias cycle: {chain}")
            seen.append(value)
            value = table[value]
        return value

    def canonical(self, token: str) -> str:
        return self.aliases.get(token, token)

    def is_protected(self, token: str) -> bool:
        return token in self.protected or token in self.aliases

    def __len__(self) -> int:
        return len(self.aliases)

    @classmethod
    def from_mapping(cls, data: Any) -> "AliasTable":
        """
        Accepts either {"aliases": {...}, "protected": [...], "related": {...}}
        or a flat alias mapping.
        """
        if not isinstance(data, dict):
            raise ConfigurationError(f"Alias table must be a mapping, got {type(data).__name__}")
        if "aliases" in data:
            return cls(
                data.get("aliases") or {},
                protected=data.get("protected") or (),
                related=data.get("related") or {},
            )
        return cls(data)

    @classmethod
    def from_yaml(cls, path: str | Path) -> "AliasTable":
        p = Path(path).expanduser()
        if not p.exists():
            raise ConfigurationError(f"Alias table not found: {p}")
        try:
            data = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Alias table {p} is not valid YAML: {e}") from e
        return cls.from_mapping(data)


@functools.lru_cache(maxsize=1)
def default_alias_table() -> AliasTable:
    text = resources.files("career_match").joinpath(_DEFAULT_ALIAS_RESOURCE).read_text(encoding="utf-8")
    return AliasTable.from_mapping(yaml.safe_load(text) or {})


class SkillNormalizer:
    """
    Stateless apart from a diagnostic counter of malformed entries (non-string
    or empty), which are dropped rather than raised.
    """

    def __init__(self, table: Optional[AliasTable] = None, extra_protected: Iterable[str] = ()):
        table = table or default_alias_table()
        extra = [clean_token(p) for p in extra_protected if isinstance(p, str)]
        if extra:
            table = AliasTable(
                table.aliases,
                protected=set(table.protected) | set(extra),
                related={k: sorted(v) for k, v in table.related.items()},
            )
        self.table = table
        self._lock = threading.Lock()
        self._malformed = 0

    @property
    def malformed_count(self) -> int:
        return self._malformed

    def reset_counters(self) -> None:
        with self._lock:
            self._malformed = 0

    def _split(self, token: str) -> List[str]:
        if self.table.is_protected(token):
            return [token]
        out: List[str] = []
        for piece in _LIST_SEP_RE.split(token):
            piece = clean_token(piece)
            if not _is_meaningful(piece):
                continue
            if self.table.is_protected(piece):
                out.append(piece)
                continue
            for part in _PAIR_SEP_RE.split(piece):
                part = clean_token(part)
                if _is_meaningful(part):
                    out.append(part)
        return out

    def normalize_token(self, token: str) -> FrozenSet[str]:
        """One raw entry may yield several skills ("Python/Django")."""
        cleaned = clean_token(token)
        if not _is_meaningful(cleaned):
            return frozenset()
        return frozenset(self.table.canonical(part) for part in self._split(cleaned))

    def normalize_with_stats(self, raw: Any) -> Tuple[FrozenSet[str], int]:
        """Returns (skills, number of malformed entries dropped)."""
        if raw is None:
            return frozenset(), 0
        if isinstance(raw, str):
            raw = [raw]

        skills = set()
        malformed = 0
        for entry in raw:
            if not isinstance(entry, str):
                malformed += 1
                logger.debug("Dropping non-string skill entry: %r", entry)
                continue
            found = self.normalize_token(entry)
            if not found:
                malformed += 1
                logger.debug("Dropping empty skill entry: %r", entry)
                continue
            skills.update(found)

        if malformed:
            with self._lock:
                self._malformed += malformed
        return frozenset(skills), malformed

    def normalize(self, raw: Any) -> FrozenSet[str]:
        return self.normalize_with_stats(raw)[0]

    def related_skills(self, skill: str) -> FrozenSet[str]:
        """Child skills implied by a parent skill ("python" -> "django", ...)."""
        found = self.normalize_token(skill) if isinstance(skill, str) else frozenset()
        out = set()
        for s in found:
            out.update(self.table.related.get(s, ()))
        return frozenset(out)


@functools.lru_cache(maxsize=1)
def default_normalizer() -> SkillNormalizer:
    return SkillNormalizer()


def normalize(raw: Any) -> FrozenSet[str]:
    """Normalize with the packaged alias table."""
    return default_normalizer().normalize(raw)
