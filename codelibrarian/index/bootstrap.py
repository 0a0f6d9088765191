"""Index readiness checks and bootstrap retry orchestration."""

from dataclasses import dataclass
import logging
from typing import Protocol

from ..query.errors import BootstrapRequiredError

log = logging.getLogger(__name__)

NO_FILES_MATCHED = "no files matched the configured include patterns"

UNIVERSAL_INCLUDE_PATTERNS: tuple[str, ...] = (
    "**/*.py",
    "**/*.pyi",
    "**/*.ts",
    "**/*.tsx",
    "**/*.js",
    "**/*.jsx",
    "**/*.mjs",
    "**/*.cjs",
    "**/*.go",
    "**/*.rs",
    "**/*.java",
    "**/*.kt",
    "**/*.rb",
    "**/*.php",
    "**/*.c",
    "**/*.h",
    "**/*.cc",
    "**/*.cpp",
    "**/*.hpp",
    "**/*.cs",
    "**/*.swift",
    "**/*.md",
)

UNIVERSAL_EXCLUDE_PATTERNS: tuple[str, ...] = (
    "**/.git/**",
    "**/node_modules/**",
    "**/.venv/**",
    "**/venv/**",
    "**/__pycache__/**",
    "**/dist/**",
    "**/build/**",
    "**/target/**",
    "**/coverage/**",
    "**/.codelibrarian/**",
)


@dataclass(frozen=True)
class BootstrapCheck:
    required: bool
    reason: str = ""


@dataclass(frozen=True)
class BootstrapReport:
    success: bool
    error: str | None = None
    files_indexed: int = 0


class IndexReadiness(Protocol):
    def is_bootstrap_required(self) -> BootstrapCheck: ...


class Bootstrapper(Protocol):
    def bootstrap(
        self,
        include: tuple[str, ...],
        exclude: tuple[str, ...],
    ) -> BootstrapReport: ...


def is_no_files_matched(report: BootstrapReport) -> bool:
    return bool(report.error and NO_FILES_MATCHED in report.error.lower())


def ensure_index_ready(
    readiness: IndexReadiness,
    bootstrapper: Bootstrapper | None,
    *,
    include: tuple[str, ...] = UNIVERSAL_INCLUDE_PATTERNS,
    exclude: tuple[str, ...] = UNIVERSAL_EXCLUDE_PATTERNS,
    fallback_include: tuple[str, ...] = UNIVERSAL_INCLUDE_PATTERNS,
    fallback_exclude: tuple[str, ...] = UNIVERSAL_EXCLUDE_PATTERNS,
) -> BootstrapReport | None:
    """Bootstrap the index when needed.

    A run that matched no files is retried exactly once with the fallback
    pattern set.

    Returns:
        The final bootstrap report, or None when no bootstrap was needed.

    Raises:
        BootstrapRequiredError: if the index stays unusable.
    """
    check = readiness.is_bootstrap_required()
    if not check.required:
        return None
    if bootstrapper is None:
        raise BootstrapRequiredError(check.reason or "index not ready")

    log.info(f"Bootstrap required: {check.reason}")
    report = bootstrapper.bootstrap(include, exclude)

    if not report.success and is_no_files_matched(report):
        log.warning(
            "Bootstrap matched no files; retrying once with the universal pattern set"
        )
        report = bootstrapper.bootstrap(fallback_include, fallback_exclude)

    if not report.success:
        raise BootstrapRequiredError(report.error or "bootstrap failed")

    log.info(f"Bootstrap complete. Files indexed: {report.files_indexed}")
    return report
