"""
Delivery - Collaborator Interfaces.

============================================================
RESPONSIBILITY
============================================================
Interfaces for the external services the pipeline drives:

- ArtifactRenderer: artifact -> bytes
- DeliveryTransport: bytes -> recipients

Both are async and may raise; the pipeline applies timeouts
and records failures. Neither retries internally.

Development defaults:
- UnconfiguredRenderer: fails every render with a clear reason
- OutboxTransport: writes payloads to a local directory

============================================================
"""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Union

from core.exceptions import RenderError, TransportError
from delivery.models import ArtifactSnapshot


logger = logging.getLogger(__name__)


class ArtifactRenderer(ABC):
    """Produces the file for an artifact."""

    @abstractmethod
    async def render(self, artifact: ArtifactSnapshot) -> bytes:
        """
        Render an artifact.

        Raises:
            Exception: On any failure (recorded as failed attempt)
        """
        pass


class DeliveryTransport(ABC):
    """Hands rendered bytes to recipients."""

    @abstractmethod
    async def deliver(
        self,
        payload: bytes,
        recipients: List[str],
        artifact: ArtifactSnapshot,
    ) -> None:
        """
        Deliver a payload.

        Raises:
            Exception: On any failure (recorded as failed attempt)
        """
        pass


class UnconfiguredRenderer(ArtifactRenderer):
    """Renderer used when none is wired in."""

    async def render(self, artifact: ArtifactSnapshot) -> bytes:
        raise RenderError(
            f"No renderer configured for format '{artifact.delivery_format}'",
            artifact_id=artifact.id,
        )


class OutboxTransport(DeliveryTransport):
    """
    Writes each delivery to a directory instead of sending it.

    One payload file plus a JSON envelope (recipients, artifact)
    per delivery. Intended for development and demos.
    """

    def __init__(self, outbox_dir: Union[str, Path]) -> None:
        self._outbox_dir = Path(outbox_dir)

    @property
    def outbox_dir(self) -> Path:
        return self._outbox_dir

    async def deliver(
        self,
        payload: bytes,
        recipients: List[str],
        artifact: ArtifactSnapshot,
    ) -> None:
        await asyncio.to_thread(self._write, payload, recipients, artifact)

    def _write(
        self,
        payload: bytes,
        recipients: List[str],
        artifact: ArtifactSnapshot,
    ) -> Path:
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%f")
        base = f"{artifact.id}_{stamp}"
        try:
            self._outbox_dir.mkdir(parents=True, exist_ok=True)
            payload_path = self._outbox_dir / f"{base}.{artifact.delivery_format}"
            payload_path.write_bytes(payload)
            envelope = {
                "artifact_id": str(artifact.id),
                "artifact_name": artifact.name,
                "recipients": list(recipients),
                "file": payload_path.name,
                "size": len(payload),
            }
            (self._outbox_dir / f"{base}.json").write_text(json.dumps(envelope, indent=2))
        except OSError as e:
            raise TransportError(f"Outbox write failed: {e}", artifact_id=artifact.id, cause=e)

        logger.info(f"Outbox: wrote {payload_path.name} for {len(recipients)} recipient(s)")
        return payload_path


def describe_error(error: BaseException) -> str:
    """Error text stored in delivery history."""
    message = str(error).strip()
    if not message:
        return type(error).__name__
    return message


__all__ = [
    "ArtifactRenderer",
    "DeliveryTransport",
    "UnconfiguredRenderer",
    "OutboxTransport",
    "describe_error",
]
