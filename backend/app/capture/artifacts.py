"""
artifacts.py — In-memory registry of finalized recordings and stills.

An artifact reference behaves like a browser object URL: it is created
once per finalized capture, resolves to the bytes while live, and is
revoked (bytes dropped) when the owning session is cleared. Revoking is
idempotent. Nothing here touches disk; captured media lives only as long
as the process.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from backend.app.capture.models import MediaKind
from backend.app.core.errors import NotFoundError

logger = logging.getLogger(__name__)


@dataclass
class Artifact:
    """One finalized capture: a recording or a still image."""
    ref: str
    kind: MediaKind
    mime_type: str
    data: bytes = field(repr=False)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    metadata: Dict[str, Any] = field(default_factory=dict)
    revoked: bool = False

    @property
    def size_bytes(self) -> int:
        return len(self.data)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ref": self.ref,
            "kind": self.kind.value,
            "mime_type": self.mime_type,
            "size_bytes": self.size_bytes,
            "created_at": self.created_at.isoformat(),
            "metadata": self.metadata,
        }


class ArtifactRegistry:
    """Creates, resolves and revokes artifact references."""

    def __init__(self) -> None:
        self._live: Dict[str, Artifact] = {}

    def __len__(self) -> int:
        return len(self._live)

    def create(
        self,
        kind: MediaKind,
        mime_type: str,
        data: bytes,
        **metadata: Any,
    ) -> Artifact:
        ref = f"artifact:{kind.value}:{uuid.uuid4().hex}"
        artifact = Artifact(
            ref=ref, kind=kind, mime_type=mime_type,
            data=data, metadata=metadata,
        )
        self._live[ref] = artifact
        logger.debug("Artifact %s created (%d bytes)", ref, artifact.size_bytes)
        return artifact

    def get(self, ref: str) -> Artifact:
        artifact = self._live.get(ref)
        if artifact is None:
            raise NotFoundError("Artifact", ref=ref)
        return artifact

    def revoke(self, artifact: Optional[Union[Artifact, str]]) -> bool:
        """Free an artifact. Returns False if it was already gone."""
        if artifact is None:
            return False
        ref = artifact if isinstance(artifact, str) else artifact.ref
        live = self._live.pop(ref, None)
        if live is None:
            return False
        live.revoked = True
        live.data = b""
        logger.debug("Artifact %s revoked", ref)
        return True

    def revoke_all(self) -> int:
        refs = list(self._live)
        for ref in refs:
            self.revoke(ref)
        return len(refs)

    def live_refs(self, kind: Optional[MediaKind] = None) -> List[str]:
        return [
            ref for ref, artifact in self._live.items()
            if kind is None or artifact.kind is kind
        ]
