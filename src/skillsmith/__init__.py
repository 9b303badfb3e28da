"""skillsmith: generate and verify SKILL.md knowledge files for libraries."""

__version__ = "0.3.0"
