"""Runtime configuration for Speck-It Clarify."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

PROJECT_MARKER_DIRECTORIES = (".specify", ".speck-it")
DEFAULT_PREREQ_SCRIPT = Path(".specify") / "scripts" / "bash" / "check-prerequisites.sh"
DEFAULT_MAX_QUESTIONS = 5
ROOT_SUGGESTION = "Provide the project root (--root or the 'root' argument) or set SPECKIT_PROJECT_ROOT."


def _candidate_bases() -> List[Path]:
    cwd = Path.cwd().resolve()
    bases: List[Path] = [cwd]
    bases.extend(cwd.parents)
    seen: set[Path] = set()
    ordered: List[Path] = []
    for base in bases:
        if base not in seen:
            seen.add(base)
            ordered.append(base)
    return ordered


def locate_project_root() -> Optional[Path]:
    """Walk up from the working directory to the first Spec Kit project marker."""
    for base in _candidate_bases():
        for marker in PROJECT_MARKER_DIRECTORIES:
            if (base / marker).exists():
                return base
    return None


def resolve_root(root: Optional[str] = None) -> Path:
    """Resolve the project root from an argument, the environment, or detection."""
    if root:
        resolved = Path(root).expanduser().resolve()
        if not resolved.exists():
            raise ValueError(f"Provided root '{root}' does not exist.")
        return resolved

    env_root = os.getenv("SPECKIT_PROJECT_ROOT")
    if env_root:
        env_path = Path(env_root).expanduser().resolve()
        if not env_path.exists():
            raise ValueError(
                f"Environment variable SPECKIT_PROJECT_ROOT points to '{env_root}', which does not exist."
            )
        return env_path

    detected_root = locate_project_root()
    if detected_root:
        return detected_root

    raise ValueError(
        "Unable to determine project root automatically. Provide the 'root' argument "
        "or set the SPECKIT_PROJECT_ROOT environment variable."
    )


@dataclass(slots=True)
class ClarifyConfig:
    """Settings for one clarification run."""

    project_root: Path
    prereq_script: Path
    max_questions: int = DEFAULT_MAX_QUESTIONS
    log_level: str = "INFO"
    log_file: Optional[Path] = None

    @classmethod
    def from_env(cls, root: Optional[str] = None) -> "ClarifyConfig":
        """Build configuration from SPECKIT_* environment variables."""
        project_root = resolve_root(root)

        script = Path(os.getenv("SPECKIT_PREREQ_SCRIPT") or DEFAULT_PREREQ_SCRIPT)
        if not script.is_absolute():
            script = project_root / script

        raw_max = os.getenv("SPECKIT_CLARIFY_MAX_QUESTIONS")
        try:
            max_questions = int(raw_max) if raw_max else DEFAULT_MAX_QUESTIONS
        except ValueError:
            raise ValueError(
                f"SPECKIT_CLARIFY_MAX_QUESTIONS must be an integer, got '{raw_max}'."
            ) from None
        if max_questions < 1:
            raise ValueError("SPECKIT_CLARIFY_MAX_QUESTIONS must be at least 1.")

        log_file = os.getenv("SPECKIT_LOG_FILE")
        return cls(
            project_root=project_root,
            prereq_script=script,
            max_questions=max_questions,
            log_level=os.getenv("SPECKIT_LOG_LEVEL", "INFO").upper(),
            log_file=Path(log_file).expanduser() if log_file else None,
        )
