from __future__ import annotations

from typing import Optional


class BuildError(Exception):
    """Base class for failures that abort a single architecture's build."""


class TransferError(BuildError):
    pass


class VerificationError(BuildError):
    pass


class SizeError(VerificationError):
    pass


class FormatError(VerificationError):
    pass


class MountError(BuildError):
    pass


class StageError(BuildError):
    pass


class CustomizationError(BuildError):
    def __init__(self, step: str, message: str) -> None:
        self.step = step
        super().__init__(f"[{step}] {message}")


class PreconditionError(BuildError):
    pass


class MissingBootAssetError(BuildError):
    def __init__(self, asset: str, message: Optional[str] = None) -> None:
        self.asset = asset
        super().__init__(message or f"Required boot asset missing from working tree: {asset}")


class ComposeError(BuildError):
    pass


class EnvironmentCheckError(BuildError):
    def __init__(self, problems: list[str]) -> None:
        self.problems = list(problems)
        super().__init__("; ".join(self.problems))


class ManifestError(ValueError):
    pass


class ConfigError(ValueError):
    pass


class BuildInterrupted(KeyboardInterrupt):
    """Raised on SIGTERM so that scoped cleanup still runs."""
