from career_match.extraction.extractor import UrlExtractor, extract, extract_links
from career_match.extraction.profiles import (
    BUILTIN_PROFILES,
    GENERIC_PROFILE,
    AttributeRule,
    PathRule,
    PatternProfile,
    ProfileRegistry,
)

__all__ = [
    "UrlExtractor",
    "extract",
    "extract_links",
    "PatternProfile",
    "PathRule",
    "AttributeRule",
    "ProfileRegistry",
    "GENERIC_PROFILE",
    "BUILTIN_PROFILES",
]
