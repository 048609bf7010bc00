from career_match.config import PipelineConfig, load_config
from career_match.engine import PipelineOrchestrator
from career_match.errors import CareerMatchError, ConfigurationError, FetchError
from career_match.extraction import PatternProfile, UrlExtractor, extract, extract_links
from career_match.scoring import SkillFrequencyTable, rank, score
from career_match.skills import SkillNormalizer, normalize

__version__ = "0.1.0"

__all__ = [
    "PipelineConfig",
    "PipelineOrchestrator",
    "load_config",
    "CareerMatchError",
    "ConfigurationError",
    "FetchError",
    "PatternProfile",
    "UrlExtractor",
    "extract",
    "extract_links",
    "SkillFrequencyTable",
    "SkillNormalizer",
    "normalize",
    "rank",
    "score",
]
