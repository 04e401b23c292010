"""Shared fixtures for the Speck-It Clarify test suite."""

import json
import subprocess
import sys
from pathlib import Path
from types import SimpleNamespace

import pytest

# Add the project root to the path so tests run without an install
sys.path.insert(0, str(Path(__file__).parent.parent))

from speckit_clarify import workflow as workflow_module
from speckit_clarify.config import ClarifyConfig
from speckit_clarify.locator import SpecLocator
from speckit_clarify.session import ClarificationSession

SESSION_DATE = "2025-01-15"

SAMPLE_SPEC = """# Feature Specification: Workspace Invites

## Overview
Users can invite a teammate to their workspace.

## User Scenarios
- Given a user is signed in, When they send an invite, Then the teammate receives an email.

## Functional Requirements
- FR-001: System MUST send invitations by email.
- FR-002: System MUST expire invitations after 7 days.

## Key Entities
- Invitation: email, inviter, expiry timestamp.

## Non-Functional Requirements
- Invitations must be fast.

## Edge Cases
- Invalid email addresses are rejected with a message.

## Out of Scope
- Billing changes are excluded.
"""


def fake_runner(payload, returncode=0, stderr=""):
    """Stand-in for ``subprocess.run`` that replays a discovery payload."""
    stdout = payload if isinstance(payload, str) else json.dumps(payload)

    def run(command, **kwargs):
        run.calls.append((command, kwargs))
        return subprocess.CompletedProcess(command, returncode, stdout=stdout, stderr=stderr)

    run.calls = []
    return run


@pytest.fixture(autouse=True)
def clear_session_registry():
    """Keep the module-level session registry isolated per test."""
    workflow_module._SESSION_REGISTRY.clear()
    yield
    workflow_module._SESSION_REGISTRY.clear()


@pytest.fixture
def sample_spec():
    return SAMPLE_SPEC


@pytest.fixture
def make_project(tmp_path):
    """Build a project with one feature spec and a replaying locator."""

    def build(spec_text=SAMPLE_SPEC, max_questions=5, write_spec=True):
        feature_dir = tmp_path / "specs" / "001-workspace-invites"
        feature_dir.mkdir(parents=True, exist_ok=True)
        spec_path = feature_dir / "spec.md"
        if write_spec:
            spec_path.write_text(spec_text, encoding="utf-8")

        script = tmp_path / ".specify" / "scripts" / "bash" / "check-prerequisites.sh"
        script.parent.mkdir(parents=True, exist_ok=True)
        script.write_text("#!/usr/bin/env bash\n", encoding="utf-8")

        payload = {
            "FEATURE_DIR": str(feature_dir),
            "FEATURE_SPEC": str(spec_path),
            "IMPL_PLAN": str(feature_dir / "plan.md"),
            "TASKS": str(feature_dir / "tasks.md"),
            "BRANCH": "001-workspace-invites",
        }
        runner = fake_runner(payload)
        config = ClarifyConfig(project_root=tmp_path, prereq_script=script, max_questions=max_questions)

        def new_session(cfg=config):
            locator = SpecLocator(cfg.project_root, cfg.prereq_script, runner=runner)
            return ClarificationSession(cfg, locator=locator, session_date=SESSION_DATE)

        return SimpleNamespace(
            root=tmp_path,
            feature_dir=feature_dir,
            spec_path=spec_path,
            script=script,
            runner=runner,
            config=config,
            new_session=new_session,
        )

    return build
