"""Exception taxonomy for the conversion pipeline."""

from __future__ import annotations


class Html2ExeError(RuntimeError):
    """Base class for every pipeline failure."""


# --- Intake -----------------------------------------------------------------


class IntakeError(Html2ExeError):
    """The uploaded archive was rejected. Always terminal and user-facing."""

    reason = "invalid_archive"


class InvalidArchive(IntakeError):
    reason = "invalid_archive"


class TooLarge(IntakeError):
    reason = "too_large"


class UnsafePath(IntakeError):
    reason = "unsafe_path"


class DisallowedType(IntakeError):
    reason = "disallowed_type"


class EmptyArchive(IntakeError):
    reason = "empty_archive"


class NoEntryDocument(IntakeError):
    reason = "no_entry_document"


# --- Materialization / dependencies ------------------------------------------


class MaterializeError(Html2ExeError):
    """Scaffold generation failed."""


class InstallFailed(Html2ExeError):
    """Dependency installation failed."""


# --- Build ------------------------------------------------------------------


class BuildCommandFailed(Html2ExeError):
    """The toolchain exited non-zero. Raw output is kept for operators."""

    def __init__(
        self,
        message: str,
        *,
        returncode: int | None = None,
        stdout: str = "",
        stderr: str = "",
    ) -> None:
        super().__init__(message)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr


class BuildTimeout(BuildCommandFailed):
    """The toolchain ran past its wall-clock limit and was killed."""


class NoArtifactsProduced(Html2ExeError):
    """The toolchain exited cleanly but no executable could be located."""


# --- State machine ----------------------------------------------------------


class InvalidTransition(Html2ExeError):
    """A phase change that the transition table does not allow."""


__all__ = [
    "BuildCommandFailed",
    "BuildTimeout",
    "DisallowedType",
    "EmptyArchive",
    "Html2ExeError",
    "InstallFailed",
    "IntakeError",
    "InvalidArchive",
    "InvalidTransition",
    "MaterializeError",
    "NoArtifactsProduced",
    "NoEntryDocument",
    "TooLarge",
    "UnsafePath",
]
