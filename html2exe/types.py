"""Shared Pydantic models: phases, build records and submission config."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from html2exe import naming


class Phase(str, Enum):
    UPLOADING = "uploading"
    EXTRACTING = "extracting"
    VALIDATING = "validating"
    GENERATING = "generating"
    INSTALLING = "installing"
    BUILDING = "building"
    DISTRIBUTING = "distributing"
    COMPLETED = "completed"
    FAILED = "failed"
    # Returned for unknown ids, never stored
    NOT_FOUND = "not_found"

    @property
    def terminal(self) -> bool:
        return self in (Phase.COMPLETED, Phase.FAILED)


PHASE_ORDER: tuple[Phase, ...] = (
    Phase.UPLOADING,
    Phase.EXTRACTING,
    Phase.VALIDATING,
    Phase.GENERATING,
    Phase.INSTALLING,
    Phase.BUILDING,
    Phase.DISTRIBUTING,
    Phase.COMPLETED,
)

PHASE_DESCRIPTIONS: dict[Phase, str] = {
    Phase.UPLOADING: "Upload received",
    Phase.EXTRACTING: "Extracting archive",
    Phase.VALIDATING: "Validating web content",
    Phase.GENERATING: "Generating desktop project",
    Phase.INSTALLING: "Installing build dependencies",
    Phase.BUILDING: "Building executable",
    Phase.DISTRIBUTING: "Collecting build artifacts",
    Phase.COMPLETED: "Build completed successfully",
    Phase.FAILED: "Build failed",
    Phase.NOT_FOUND: "Build not found",
}


def _build_transitions() -> dict[Phase, frozenset[Phase]]:
    table: dict[Phase, frozenset[Phase]] = {}
    for current, following in zip(PHASE_ORDER, PHASE_ORDER[1:]):
        table[current] = frozenset({following, Phase.FAILED})
    table[Phase.COMPLETED] = frozenset()
    table[Phase.FAILED] = frozenset()
    return table


TRANSITIONS: dict[Phase, frozenset[Phase]] = _build_transitions()


def _check_transitions(table: dict[Phase, frozenset[Phase]]) -> None:
    stored = set(Phase) - {Phase.NOT_FOUND}
    if set(table) != stored:
        raise AssertionError(f"transition table must cover exactly {sorted(stored)}")
    for source, targets in table.items():
        if Phase.NOT_FOUND in targets or source in targets:
            raise AssertionError(f"illegal target from {source.value}")
        for target in targets - {Phase.FAILED}:
            if PHASE_ORDER.index(target) != PHASE_ORDER.index(source) + 1:
                raise AssertionError(f"{source.value} -> {target.value} skips a phase")
        if not source.terminal and Phase.FAILED not in targets:
            raise AssertionError(f"{source.value} cannot fail")


_check_transitions(TRANSITIONS)


def can_transition(current: Phase, target: Phase) -> bool:
    return target in TRANSITIONS.get(current, frozenset())


def utcnow() -> datetime:
    return datetime.now(UTC)


class _WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class BuildRecord(_WireModel):
    """Immutable snapshot of one build's progress."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    build_id: str
    phase: Phase
    description: str
    created_at: datetime
    updated_at: datetime
    note: str | None = None
    estimated_time: str | None = None
    error: str | None = None
    download_url: str | None = None
    warnings: tuple[str, ...] = ()

    @classmethod
    def not_found(cls, build_id: str) -> BuildRecord:
        now = utcnow()
        return cls(
            build_id=build_id,
            phase=Phase.NOT_FOUND,
            description=PHASE_DESCRIPTIONS[Phase.NOT_FOUND],
            created_at=now,
            updated_at=now,
        )

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class AppConfig(_WireModel):
    """User-supplied settings for the generated desktop application."""

    app_name: str = Field(default=naming.DEFAULT_APP_NAME, min_length=1, max_length=214)
    description: str = "Generated desktop application from HTML"
    version: str = Field(default="1.0.0", pattern=r"^\d+\.\d+\.\d+([-+][0-9A-Za-z.-]+)?$")
    width: int = Field(default=1200, ge=100, le=10000)
    height: int = Field(default=800, ge=100, le=10000)
    company: str = "HTML2EXE Converter"

    @property
    def technical_name(self) -> str:
        return naming.sanitize_app_name(self.app_name)

    @property
    def app_id(self) -> str:
        return naming.app_id(self.technical_name)

    @property
    def copyright(self) -> str:
        return naming.copyright_line(self.company)


class IconUpload(BaseModel):
    filename: str
    content: bytes
    content_type: str | None = None


class ExtractedFiles(BaseModel):
    """Outcome of a successful intake."""

    files: list[str]
    entry_document: str = "index.html"
    entry_copied_from: str | None = None
    flattened: bool = False
    warnings: list[str] = Field(default_factory=list)
