"""Screenshot artifact store keyed by (kind, name, run id).

Artifacts live at ``<root>/<kind>/[<run_id>/]<name>.png`` and are
referenced by their path relative to the root (an *artifact ref*, e.g.
``current/form.png``). Resolving a ref is a single path computation; a
missing artifact is a hard error, never a directory-wide search.
"""

from __future__ import annotations

import logging
from pathlib import Path, PurePosixPath

from visualheal.core.errors import ArtifactNotFoundError, InvalidStateError
from visualheal.core.fsutil import atomic_copy, with_io_retry

logger = logging.getLogger(__name__)

BASELINE = "baseline"
CURRENT = "current"
DIFF = "diff"
VERIFICATION = "verification"

KINDS = (BASELINE, CURRENT, DIFF, VERIFICATION)
DEFAULT_SUFFIX = ".png"


class ArtifactStore:
    """Deterministic mapping from artifact refs to files under *root*."""

    def __init__(self, root: Path):
        self.root = Path(root)

    def ref_for(self, kind: str, name: str, run_id: str | None = None) -> str:
        """Build the ref for an artifact. Does not touch the filesystem."""
        if kind not in KINDS:
            raise InvalidStateError(f"Unknown artifact kind: {kind}", kind=kind)
        filename = name if name.endswith(DEFAULT_SUFFIX) else f"{name}{DEFAULT_SUFFIX}"
        parts = [kind, run_id, filename] if run_id else [kind, filename]
        return str(PurePosixPath(*parts))

    def path_for(self, ref: str) -> Path:
        """Map a ref to its absolute path without requiring it to exist."""
        rel = PurePosixPath(ref)
        if rel.is_absolute() or ".." in rel.parts:
            raise InvalidStateError(f"Artifact ref escapes the store: {ref}", ref=ref)
        return self.root.joinpath(*rel.parts)

    def resolve(self, ref: str) -> Path:
        """Return the path of an existing artifact or raise ArtifactNotFoundError."""
        path = self.path_for(ref)
        if not path.is_file():
            raise ArtifactNotFoundError(f"Artifact not found: {ref}", ref=ref, path=path)
        return path

    def exists(self, ref: str) -> bool:
        try:
            return self.path_for(ref).is_file()
        except InvalidStateError:
            return False

    def promote(self, source_ref: str, target_ref: str) -> Path:
        """Atomically copy one artifact over another (temp file + rename)."""
        source = self.resolve(source_ref)
        target = self.path_for(target_ref)
        with_io_retry(lambda: atomic_copy(source, target), target, action="copy artifact to")
        logger.info("Promoted %s -> %s", source_ref, target_ref)
        return target
