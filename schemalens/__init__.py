"""Structure inference for semi-structured JSON records."""

from .analyze import AnalysisResult, TableAnalysis, analyze, analyze_table
from .capabilities import extract_capabilities
from .config import AnalysisConfig, RulePatterns
from .patterns import collapse_paths
from .sample import collect_samples
from .stats import compute_stats
from .structure import detect_structure

__all__ = [
    "AnalysisConfig",
    "AnalysisResult",
    "RulePatterns",
    "TableAnalysis",
    "analyze",
    "analyze_table",
    "collapse_paths",
    "collect_samples",
    "compute_stats",
    "detect_structure",
    "extract_capabilities",
]
