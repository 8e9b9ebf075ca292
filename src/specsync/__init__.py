"""
specsync: synchronize schema-constrained specification documents with a project.

File: src/specsync/__init__.py

Purpose
- Package root. Normalizes extractor output, validates it against closed
  per-domain schemas, merges it with curated documents and persists the result.

Import boundary rules
- Must not have side effects at import time (no config loading, no logging init).
- Heavy submodules are imported by callers, not re-exported here.
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
