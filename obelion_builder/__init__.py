"""Obelion image builder (Python-first, per-architecture).

Core design goals:
- Idempotent, resumable steps
- Verified base images only
- Mounts always released
- Architecture-aware boot layout
- Centralized logging
"""

__version__ = "1.0.0"

__all__ = ["__version__"]
