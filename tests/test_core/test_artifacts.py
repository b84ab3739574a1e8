"""Tests for the screenshot artifact store."""

from __future__ import annotations

from pathlib import Path

import pytest

from visualheal.core.artifacts import ArtifactStore
from visualheal.core.errors import ArtifactNotFoundError, InvalidStateError


@pytest.fixture
def artifacts(tmp_path: Path) -> ArtifactStore:
    return ArtifactStore(tmp_path / "screenshots")


class TestRefs:
    def test_ref_for_kind_and_name(self, artifacts: ArtifactStore):
        assert artifacts.ref_for("current", "form") == "current/form.png"
        assert artifacts.ref_for("baseline", "form.png") == "baseline/form.png"

    def test_ref_for_with_run_id(self, artifacts: ArtifactStore):
        assert artifacts.ref_for("verification", "form", run_id="r1") == "verification/r1/form.png"

    def test_unknown_kind_rejected(self, artifacts: ArtifactStore):
        with pytest.raises(InvalidStateError):
            artifacts.ref_for("thumbnails", "form")

    def test_escaping_refs_rejected(self, artifacts: ArtifactStore):
        with pytest.raises(InvalidStateError):
            artifacts.path_for("../outside.png")
        with pytest.raises(InvalidStateError):
            artifacts.path_for("/etc/passwd")


class TestResolve:
    def test_missing_artifact_is_hard_error(self, artifacts: ArtifactStore):
        with pytest.raises(ArtifactNotFoundError):
            artifacts.resolve("current/form.png")
        assert artifacts.exists("current/form.png") is False

    def test_promote_copies_bytes(self, artifacts: ArtifactStore):
        current = artifacts.path_for("current/form.png")
        current.parent.mkdir(parents=True)
        current.write_bytes(b"new-pixels")

        target = artifacts.promote("current/form.png", "baseline/form.png")

        assert target.read_bytes() == b"new-pixels"
        assert current.read_bytes() == b"new-pixels"

    def test_promote_missing_source_leaves_baseline(self, artifacts: ArtifactStore):
        baseline = artifacts.path_for("baseline/form.png")
        baseline.parent.mkdir(parents=True)
        baseline.write_bytes(b"old")

        with pytest.raises(ArtifactNotFoundError):
            artifacts.promote("current/form.png", "baseline/form.png")
        assert baseline.read_bytes() == b"old"
