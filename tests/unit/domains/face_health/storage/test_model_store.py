"""Tests for the file-backed ModelStore and its snapshots."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from cryptography.fernet import Fernet

from facehealth.core.storage.encryption import DocumentCodec
from facehealth.domains.face_health.domain_logic.models import (
    ForestModel,
    Leaf,
    LinearModel,
    ModelType,
    Split,
)
from facehealth.domains.face_health.storage.model_store import (
    SNAPSHOT_MANIFEST,
    ModelStore,
    SnapshotNotFoundError,
    storage_key,
)
from facehealth.domains.face_health.storage.models import ModelMetadata


def _metadata(target_id: str, model_type: ModelType = ModelType.LINEAR, r: float = 0.8) -> ModelMetadata:
    return ModelMetadata(
        target_id=target_id,
        correlation=r,
        trained_at=datetime(2026, 2, 1, 12, 0, tzinfo=timezone.utc),
        feature_count=2,
        model_type=model_type,
        day_count=14,
        mae=1.5,
        rmse=2.0,
    )


LINEAR = LinearModel(bias=3.0, coefficients=[2.0, -1.0])
FOREST = ForestModel(
    trees=[Split(feature_index=0, threshold=0.5, left=Leaf(1.0), right=Leaf(2.0))],
    feature_importance=[1.0, 0.0],
)


class _Clock:
    """Deterministic clock advancing one second per call."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        current = self.now
        self.now += timedelta(seconds=1)
        return current


class TestStorageKey:
    def test_unsafe_characters_replaced(self):
        assert storage_key('a/b\\c:d*e?f"g<h>i|j(k)l[m]n{o}p#q%r&s') == "a_b_c_d_e_f_g_h_i_j_k_l_m_n_o_p_q_r_s"

    def test_safe_ids_unchanged(self):
        assert storage_key("sleepScore") == "sleepScore"

    def test_file_names(self, model_store):
        model_store.save("Heart Rate (bpm)", LINEAR, _metadata("Heart Rate (bpm)"))
        assert (model_store.models_dir / "Heart Rate _bpm__model.json").exists()
        assert (model_store.models_dir / "Heart Rate _bpm__metadata.json").exists()


class TestSaveLoad:
    def test_linear_round_trip(self, model_store):
        model_store.save("hrv", LINEAR, _metadata("hrv"))
        loaded = model_store.load("hrv")
        assert loaded.model == LINEAR
        assert loaded.model_type is ModelType.LINEAR
        assert loaded.metadata == _metadata("hrv")

    def test_forest_round_trip(self, model_store):
        model_store.save("hrv", FOREST, _metadata("hrv", ModelType.FOREST))
        loaded = model_store.load("hrv")
        assert loaded.model == FOREST
        assert loaded.model_type is ModelType.FOREST

    def test_missing_model_is_absent(self, model_store):
        assert model_store.load("nothing") is None
        assert model_store.load_metadata("nothing") is None

    def test_corrupt_model_is_absent(self, model_store):
        model_store.save("hrv", LINEAR, _metadata("hrv"))
        (model_store.models_dir / "hrv_model.json").write_text("{not json")
        assert model_store.load("hrv") is None

    def test_wrong_shape_model_is_absent(self, model_store):
        model_store.save("hrv", LINEAR, _metadata("hrv"))
        (model_store.models_dir / "hrv_model.json").write_text('{"type": "linear"}')
        assert model_store.load("hrv") is None

    def test_corrupt_metadata_falls_back_to_model_tag(self, model_store):
        model_store.save("hrv", FOREST, _metadata("hrv", ModelType.FOREST))
        (model_store.models_dir / "hrv_metadata.json").write_text("[]")
        loaded = model_store.load("hrv")
        assert loaded.metadata is None
        assert loaded.model_type is ModelType.FOREST

    def test_family_comes_from_model_file(self, model_store):
        model_store.save("hrv", FOREST, _metadata("hrv", ModelType.LINEAR))
        loaded = model_store.load("hrv")
        assert loaded.model_type is ModelType.FOREST
        assert loaded.model_type is loaded.model.model_type
        assert loaded.metadata is None

    def test_metadata_without_optional_fields(self, model_store):
        model_store.save("hrv", LINEAR, _metadata("hrv"))
        (model_store.models_dir / "hrv_metadata.json").write_text(
            '{"target_id": "hrv", "correlation": 0.4, '
            '"trained_at": "2026-01-01T00:00:00", "feature_count": 24}'
        )
        metadata = model_store.load_metadata("hrv")
        assert metadata.model_type is ModelType.LINEAR
        assert metadata.is_cross_validated
        assert metadata.day_count is None

    def test_overwrite(self, model_store):
        model_store.save("hrv", LINEAR, _metadata("hrv", r=0.1))
        model_store.save("hrv", FOREST, _metadata("hrv", ModelType.FOREST, r=0.9))
        loaded = model_store.load("hrv")
        assert loaded.model == FOREST
        assert loaded.metadata.correlation == 0.9

    def test_list_and_delete(self, model_store):
        model_store.save("hrv", LINEAR, _metadata("hrv"))
        model_store.save("sleepScore", LINEAR, _metadata("sleepScore"))
        assert model_store.list_target_ids() == ["hrv", "sleepScore"]

        assert model_store.delete("hrv") is True
        assert model_store.delete("hrv") is False
        assert model_store.list_target_ids() == ["sleepScore"]

    def test_list_uses_original_target_ids(self, model_store):
        model_store.save("Weight (kg)", LINEAR, _metadata("Weight (kg)"))
        assert model_store.list_target_ids() == ["Weight (kg)"]

    def test_delete_all(self, model_store):
        model_store.save("hrv", LINEAR, _metadata("hrv"))
        model_store.save("restingHR", LINEAR, _metadata("restingHR"))
        assert model_store.delete_all() == 2
        assert model_store.list_target_ids() == []
        assert model_store.models_dir.is_dir()


class TestEncryption:
    def test_encrypted_files_are_not_plain_json(self, tmp_path):
        store = ModelStore(
            tmp_path / "m", tmp_path / "s", codec=DocumentCodec(Fernet.generate_key().decode())
        )
        store.save("hrv", LINEAR, _metadata("hrv"))
        raw = (store.models_dir / "hrv_model.json").read_bytes()
        assert b"coefficients" not in raw
        assert store.load("hrv").model == LINEAR

    def test_wrong_key_loads_as_absent(self, tmp_path):
        writer = ModelStore(
            tmp_path / "m", tmp_path / "s", codec=DocumentCodec(Fernet.generate_key().decode())
        )
        writer.save("hrv", LINEAR, _metadata("hrv"))
        reader = ModelStore(
            tmp_path / "m", tmp_path / "s", codec=DocumentCodec(Fernet.generate_key().decode())
        )
        assert reader.load("hrv") is None
        assert reader.list_target_ids() == []


class TestSnapshots:
    @pytest.fixture
    def store(self, tmp_path):
        return ModelStore(
            tmp_path / "models",
            tmp_path / "snapshots",
            clock=_Clock(datetime(2026, 2, 1, 8, 30, tzinfo=timezone.utc)),
        )

    def test_save_snapshot_copies_present_targets_only(self, store):
        store.save("hrv", LINEAR, _metadata("hrv"))
        snapshot = store.save_snapshot("baseline", ["hrv", "missing"])

        assert snapshot.name == "baseline"
        assert snapshot.target_ids == ["hrv"]
        folder = store.snapshots_dir / snapshot.id
        assert (folder / SNAPSHOT_MANIFEST).exists()
        assert (folder / "hrv_model.json").exists()
        assert not (folder / "missing_model.json").exists()

    def test_snapshot_id_is_local_timestamp(self, store):
        snapshot = store.save_snapshot("empty", [])
        expected = datetime(2026, 2, 1, 8, 30, tzinfo=timezone.utc).astimezone()
        assert snapshot.id == expected.strftime("%Y-%m-%d_%H%M%S")

    def test_colliding_ids_get_suffix(self, tmp_path):
        fixed = datetime(2026, 2, 1, 8, 30, tzinfo=timezone.utc)
        store = ModelStore(tmp_path / "m", tmp_path / "s", clock=lambda: fixed)
        first = store.save_snapshot("a", [])
        second = store.save_snapshot("b", [])
        third = store.save_snapshot("c", [])
        assert second.id == f"{first.id}-2"
        assert third.id == f"{first.id}-3"

    def test_list_newest_first_and_skips_unreadable(self, store):
        store.save_snapshot("older", [])
        store.save_snapshot("newer", [])
        (store.snapshots_dir / "junk").mkdir()
        names = [s.name for s in store.list_snapshots()]
        assert names == ["newer", "older"]

    def test_list_without_snapshot_dir(self, model_store):
        assert model_store.list_snapshots() == []

    def test_restore_overwrites_included_targets(self, store):
        store.save("hrv", LINEAR, _metadata("hrv", r=0.5))
        store.save("sleepScore", LINEAR, _metadata("sleepScore", r=0.6))
        snapshot = store.save_snapshot("before", ["hrv"])

        store.save("hrv", FOREST, _metadata("hrv", ModelType.FOREST, r=0.9))
        store.save("sleepScore", FOREST, _metadata("sleepScore", ModelType.FOREST, r=0.9))

        restored = store.restore_snapshot(snapshot.id)
        assert restored.target_ids == ["hrv"]
        assert store.load("hrv").model == LINEAR
        assert store.load("hrv").metadata.correlation == 0.5
        # Not in the snapshot: untouched
        assert store.load("sleepScore").model == FOREST

    def test_restore_after_delete_all(self, store):
        store.save("hrv", LINEAR, _metadata("hrv"))
        snapshot = store.save_snapshot("keep", ["hrv"])
        store.delete_all()
        store.restore_snapshot(snapshot.id)
        assert store.load("hrv").model == LINEAR

    def test_restore_unknown_snapshot(self, store):
        with pytest.raises(SnapshotNotFoundError):
            store.restore_snapshot("2020-01-01_000000")

    @pytest.mark.parametrize("bad_id", ["", ".", "..", "../models", "a/b", "a\\b"])
    def test_invalid_snapshot_ids(self, store, bad_id):
        with pytest.raises(SnapshotNotFoundError):
            store.restore_snapshot(bad_id)
        assert store.delete_snapshot(bad_id) is False

    def test_delete_snapshot(self, store):
        snapshot = store.save_snapshot("tmp", [])
        assert store.delete_snapshot(snapshot.id) is True
        assert store.delete_snapshot(snapshot.id) is False
        assert store.list_snapshots() == []

    def test_snapshot_survives_model_deletion(self, store):
        store.save("hrv", LINEAR, _metadata("hrv"))
        snapshot = store.save_snapshot("s", ["hrv"])
        store.delete("hrv")
        assert store.get_snapshot(snapshot.id).target_ids == ["hrv"]
