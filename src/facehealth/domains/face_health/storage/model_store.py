"""File-backed store for trained models, their metadata, and snapshots.

Layout::

    <models_dir>/<key>_model.json
    <models_dir>/<key>_metadata.json
    <snapshots_dir>/<YYYY-MM-DD_HHMMSS>/snapshot_metadata.json
    <snapshots_dir>/<YYYY-MM-DD_HHMMSS>/<key>_model.json, <key>_metadata.json

``key`` is the target id with path-unsafe characters replaced. Loading never
raises: a missing, unreadable or undecodable model is reported as absent.
"""

from __future__ import annotations

import json
import logging
import os
import re
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable

from facehealth.core.storage.encryption import DocumentCodec, EncryptionError
from facehealth.domains.face_health.domain_logic.models import (
    ModelFormatError,
    TrainedModel,
    model_from_dict,
    model_to_dict,
)
from facehealth.domains.face_health.storage.models import (
    LoadedModel,
    ModelMetadata,
    SnapshotManifest,
)

logger = logging.getLogger(__name__)

SNAPSHOT_MANIFEST = "snapshot_metadata.json"
SNAPSHOT_ID_FORMAT = "%Y-%m-%d_%H%M%S"

_UNSAFE_CHARS = re.compile(r'[/\\:*?"<>|()\[\]{}#%&]')


class ModelStoreError(Exception):
    """Raised when a store write or snapshot operation fails."""


class SnapshotNotFoundError(ModelStoreError):
    """Raised when a snapshot id does not name a readable snapshot."""


def storage_key(target_id: str) -> str:
    """Filesystem-safe key for a target id."""
    return _UNSAFE_CHARS.sub("_", target_id)


class ModelStore:
    """Persists models per target id and manages named snapshots.

    Usage::

        store = ModelStore("~/.facehealth/models", "~/.facehealth/model_snapshots")
        store.save("sleepScore", model, metadata)
        loaded = store.load("sleepScore")  # LoadedModel | None
        snapshot = store.save_snapshot("before vacation", ["sleepScore", "hrv"])
        store.restore_snapshot(snapshot.id)
    """

    def __init__(
        self,
        models_dir: str | Path,
        snapshots_dir: str | Path,
        *,
        codec: DocumentCodec | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._models_dir = Path(models_dir).expanduser()
        self._snapshots_dir = Path(snapshots_dir).expanduser()
        self._codec = codec or DocumentCodec()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._models_dir.mkdir(parents=True, exist_ok=True)

    @property
    def models_dir(self) -> Path:
        return self._models_dir

    @property
    def snapshots_dir(self) -> Path:
        return self._snapshots_dir

    def _model_path(self, target_id: str, directory: Path | None = None) -> Path:
        return (directory or self._models_dir) / f"{storage_key(target_id)}_model.json"

    def _metadata_path(self, target_id: str, directory: Path | None = None) -> Path:
        return (directory or self._models_dir) / f"{storage_key(target_id)}_metadata.json"

    # ------------------------------------------------------------------
    # Models
    # ------------------------------------------------------------------

    def save(self, target_id: str, model: TrainedModel, metadata: ModelMetadata) -> None:
        """Write (or overwrite) the model and metadata for a target.

        Raises:
            ModelStoreError: If either file cannot be written.
        """
        try:
            self._models_dir.mkdir(parents=True, exist_ok=True)
            _atomic_write(self._model_path(target_id), self._codec.encode(model_to_dict(model)))
            _atomic_write(self._metadata_path(target_id), self._codec.encode(metadata.to_dict()))
        except (OSError, EncryptionError) as exc:
            raise ModelStoreError(f"Failed to save model for {target_id!r}: {exc}") from exc
        logger.info(
            "Saved %s model for %s (r=%.3f)",
            metadata.model_type.value, target_id, metadata.correlation,
        )

    def load(self, target_id: str) -> LoadedModel | None:
        """Read a target's model, or ``None`` if missing or corrupt."""
        document = self._read_document(self._model_path(target_id))
        if document is None:
            return None
        try:
            model = model_from_dict(document)
        except ModelFormatError as exc:
            logger.warning("Ignoring corrupt model file for %s: %s", target_id, exc)
            return None

        metadata = self.load_metadata(target_id)
        if metadata is not None and metadata.model_type is not model.model_type:
            logger.warning(
                "Metadata for %s describes a %s model but the model file is %s; ignoring metadata",
                target_id, metadata.model_type.value, model.model_type.value,
            )
            metadata = None
        return LoadedModel(model=model, model_type=model.model_type, metadata=metadata)

    def load_metadata(self, target_id: str) -> ModelMetadata | None:
        """Read a target's metadata, or ``None`` if missing or corrupt."""
        return self._read_metadata(self._metadata_path(target_id))

    def list_target_ids(self) -> list[str]:
        """Target ids with readable metadata in the live store, sorted."""
        target_ids = []
        for path in sorted(self._models_dir.glob("*_metadata.json")):
            metadata = self._read_metadata(path)
            if metadata is not None:
                target_ids.append(metadata.target_id)
        return sorted(target_ids)

    def delete(self, target_id: str) -> bool:
        """Remove a target's model and metadata. Returns whether anything existed."""
        removed = False
        for path in (self._model_path(target_id), self._metadata_path(target_id)):
            try:
                path.unlink()
                removed = True
            except FileNotFoundError:
                pass
        if removed:
            logger.info("Deleted model for %s", target_id)
        return removed

    def delete_all(self) -> int:
        """Remove every stored model. Returns the number of models removed."""
        count = len(list(self._models_dir.glob("*_model.json")))
        shutil.rmtree(self._models_dir, ignore_errors=True)
        self._models_dir.mkdir(parents=True, exist_ok=True)
        logger.warning("Deleted ALL models: %d removed", count)
        return count

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def list_snapshots(self) -> list[SnapshotManifest]:
        """All readable snapshots, newest first."""
        if not self._snapshots_dir.is_dir():
            return []
        snapshots = []
        for folder in self._snapshots_dir.iterdir():
            if not folder.is_dir():
                continue
            manifest = self._read_manifest(folder)
            if manifest is not None:
                snapshots.append(manifest)
        return sorted(snapshots, key=lambda s: s.created_at, reverse=True)

    def get_snapshot(self, snapshot_id: str) -> SnapshotManifest | None:
        folder = self._snapshot_folder(snapshot_id)
        if folder is None or not folder.is_dir():
            return None
        return self._read_manifest(folder)

    def save_snapshot(self, name: str, target_ids: list[str]) -> SnapshotManifest:
        """Copy the current models of the given targets into a new snapshot.

        Targets without a stored model are skipped and left out of the
        manifest.

        Raises:
            ModelStoreError: If the snapshot cannot be written.
        """
        created_at = self._clock()
        base_id = created_at.astimezone().strftime(SNAPSHOT_ID_FORMAT)

        try:
            self._snapshots_dir.mkdir(parents=True, exist_ok=True)
            snapshot_id, folder = base_id, self._snapshots_dir / base_id
            suffix = 2
            while folder.exists():
                snapshot_id = f"{base_id}-{suffix}"
                folder = self._snapshots_dir / snapshot_id
                suffix += 1
            folder.mkdir()

            saved: list[str] = []
            for target_id in dict.fromkeys(target_ids):
                model_path = self._model_path(target_id)
                metadata_path = self._metadata_path(target_id)
                if not model_path.exists() or not metadata_path.exists():
                    logger.info("Snapshot %s: no model for %s, skipping", snapshot_id, target_id)
                    continue
                shutil.copy2(model_path, self._model_path(target_id, folder))
                shutil.copy2(metadata_path, self._metadata_path(target_id, folder))
                saved.append(target_id)

            manifest = SnapshotManifest(
                id=snapshot_id, name=name, created_at=created_at, target_ids=saved
            )
            _atomic_write(
                folder / SNAPSHOT_MANIFEST,
                json.dumps({
                    "name": manifest.name,
                    "created_at": manifest.created_at.isoformat(),
                    "target_ids": manifest.target_ids,
                }, indent=2).encode("utf-8"),
            )
        except OSError as exc:
            raise ModelStoreError(f"Failed to save snapshot {name!r}: {exc}") from exc

        logger.info("Saved snapshot %s (%r) with %d models", snapshot_id, name, len(saved))
        return manifest

    def restore_snapshot(self, snapshot_id: str) -> SnapshotManifest:
        """Copy a snapshot's models back over the live store.

        Every target named in the manifest has its live model replaced.

        Raises:
            SnapshotNotFoundError: If the snapshot does not exist or its
                manifest is unreadable.
            ModelStoreError: If copying fails.
        """
        manifest = self.get_snapshot(snapshot_id)
        if manifest is None:
            raise SnapshotNotFoundError(f"Snapshot not found: {snapshot_id!r}")
        folder = self._snapshots_dir / manifest.id

        try:
            self._models_dir.mkdir(parents=True, exist_ok=True)
            for target_id in manifest.target_ids:
                self.delete(target_id)
                for src, dst in (
                    (self._model_path(target_id, folder), self._model_path(target_id)),
                    (self._metadata_path(target_id, folder), self._metadata_path(target_id)),
                ):
                    if src.exists():
                        shutil.copy2(src, dst)
        except OSError as exc:
            raise ModelStoreError(f"Failed to restore snapshot {snapshot_id!r}: {exc}") from exc

        logger.info("Restored snapshot %s (%d models)", snapshot_id, manifest.target_count)
        return manifest

    def delete_snapshot(self, snapshot_id: str) -> bool:
        folder = self._snapshot_folder(snapshot_id)
        if folder is None or not folder.is_dir():
            return False
        shutil.rmtree(folder)
        logger.info("Deleted snapshot %s", snapshot_id)
        return True

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _snapshot_folder(self, snapshot_id: str) -> Path | None:
        # Snapshot ids are single path components
        if not snapshot_id or snapshot_id in {".", ".."} or Path(snapshot_id).name != snapshot_id:
            return None
        if "/" in snapshot_id or "\\" in snapshot_id:
            return None
        return self._snapshots_dir / snapshot_id

    def _read_document(self, path: Path) -> Any | None:
        try:
            raw = path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as exc:
            logger.warning("Cannot read %s: %s", path, exc)
            return None
        try:
            return self._codec.decode(raw)
        except EncryptionError as exc:
            logger.warning("Cannot decode %s: %s", path, exc)
            return None

    def _read_metadata(self, path: Path) -> ModelMetadata | None:
        document = self._read_document(path)
        if not isinstance(document, dict):
            return None
        try:
            return ModelMetadata.from_dict(document)
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("Ignoring corrupt metadata %s: %s", path, exc)
            return None

    def _read_manifest(self, folder: Path) -> SnapshotManifest | None:
        try:
            data = json.loads((folder / SNAPSHOT_MANIFEST).read_text(encoding="utf-8"))
            created_at = datetime.fromisoformat(data["created_at"])
            if created_at.tzinfo is None:
                created_at = created_at.replace(tzinfo=timezone.utc)
            return SnapshotManifest(
                id=folder.name,
                name=str(data["name"]),
                created_at=created_at,
                target_ids=[str(t) for t in data.get("target_ids", [])],
            )
        except (OSError, json.JSONDecodeError, KeyError, TypeError, ValueError) as exc:
            logger.debug("Skipping snapshot folder %s: %s", folder, exc)
            return None


def _atomic_write(path: Path, data: bytes) -> None:
    tmp = path.with_name(path.name + ".tmp")
    tmp.write_bytes(data)
    os.replace(tmp, path)
