"""Discovery of the active feature's spec.

The prerequisite script owns branch and feature-directory conventions; this
module only runs it and validates what it reports. Paths are never guessed.
"""

from __future__ import annotations

import json
import logging
import subprocess
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from .document import SpecDocument
from .errors import LocatorError, SpecNotFoundError
from .models import FeaturePaths
from .speckit_logging import log_error_with_context, log_performance

logger = logging.getLogger("speckit.clarify.locator")

REQUIRED_KEYS = ("FEATURE_DIR", "FEATURE_SPEC")


class SpecLocator:
    """Resolve feature paths through the prerequisite discovery script."""

    def __init__(
        self,
        project_root: Path | str,
        script: Path | str,
        *,
        runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
    ):
        self.project_root = Path(project_root).resolve()
        self.script = Path(script)
        if not self.script.is_absolute():
            self.script = self.project_root / self.script
        self.runner = runner

    def command(self) -> List[str]:
        """Build the discovery command for the configured script."""
        if self.script.suffix.lower() == ".ps1":
            return ["pwsh", "-NoProfile", "-File", str(self.script), "-Json", "-PathsOnly"]
        return ["bash", str(self.script), "--json", "--paths-only"]

    @log_performance("locate_spec")
    def locate(self) -> FeaturePaths:
        """Run the discovery script and parse its JSON payload."""
        if not self.script.exists():
            raise LocatorError(f"Prerequisite script not found at {self.script}.")

        command = self.command()
        try:
            completed = self.runner(
                command,
                cwd=str(self.project_root),
                capture_output=True,
                text=True,
                check=False,
            )
        except OSError as e:
            log_error_with_context(e, {"operation": "locate_spec", "command": command})
            raise LocatorError(f"Could not run prerequisite script {self.script}: {e}") from e

        if completed.returncode != 0:
            detail = (completed.stderr or "").strip() or "no error output"
            raise LocatorError(
                f"Prerequisite script exited with status {completed.returncode}: {detail}"
            )

        paths = self.parse_payload(completed.stdout)
        logger.info(f"Located spec for {paths.feature_dir.name} at {paths.spec_path}")
        return paths

    def parse_payload(self, text: Optional[str]) -> FeaturePaths:
        """Validate a discovery payload and turn it into ``FeaturePaths``."""
        raw = (text or "").strip()
        if not raw:
            raise LocatorError("Prerequisite script produced no output.")
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as e:
            raise LocatorError(f"Prerequisite script returned malformed JSON: {e.msg}") from e
        if not isinstance(payload, dict):
            raise LocatorError("Prerequisite payload must be a JSON object.")

        missing = [key for key in REQUIRED_KEYS if not _non_empty_string(payload.get(key))]
        if missing:
            raise LocatorError(f"Prerequisite payload is missing {', '.join(missing)}.")

        for key in ("IMPL_PLAN", "TASKS", "BRANCH"):
            value = payload.get(key)
            if value is not None and not isinstance(value, str):
                raise LocatorError(f"Prerequisite payload field {key} must be a string.")

        return FeaturePaths(
            feature_dir=self._resolve(payload["FEATURE_DIR"]),
            spec_path=self._resolve(payload["FEATURE_SPEC"]),
            plan_path=self._optional_path(payload, "IMPL_PLAN"),
            tasks_path=self._optional_path(payload, "TASKS"),
            branch=payload.get("BRANCH") or None,
        )

    def load_spec(self, paths: FeaturePaths) -> SpecDocument:
        """Read the located spec; a missing file is never created here."""
        if not paths.spec_path.is_file():
            raise SpecNotFoundError(f"Feature spec not found at {paths.spec_path}.")
        return SpecDocument.load(paths.spec_path)

    def _resolve(self, value: str) -> Path:
        path = Path(value).expanduser()
        if not path.is_absolute():
            path = self.project_root / path
        return path.resolve()

    def _optional_path(self, payload: Dict[str, Any], key: str) -> Optional[Path]:
        value = payload.get(key)
        return self._resolve(value) if value else None


def _non_empty_string(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip())
