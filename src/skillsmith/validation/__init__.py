"""Pattern extraction, probe generation and the validation policy."""

from skillsmith.validation.pattern_parser import ParsedArtifact, PatternParser
from skillsmith.validation.probe_generator import ProbeGenerator
from skillsmith.validation.result_validator import ResultValidator
from skillsmith.validation.stage import ValidationReport, ValidationStage

__all__ = [
    "ParsedArtifact",
    "PatternParser",
    "ProbeGenerator",
    "ResultValidator",
    "ValidationReport",
    "ValidationStage",
]
