"""Tests for model serialization and the error taxonomy."""

from __future__ import annotations

import json

import pytest

from facehealth.domains.face_health.domain_logic.errors import (
    InsufficientDataError,
    SingularMatrixError,
    TrainingFailedError,
)
from facehealth.domains.face_health.domain_logic.features import (
    FEATURE_COUNT,
    feature_name,
    normalize_head_angle,
)
from facehealth.domains.face_health.domain_logic.models import (
    ForestModel,
    Leaf,
    LinearModel,
    ModelFormatError,
    ModelType,
    Split,
    model_from_dict,
    model_to_dict,
)


class TestSerialization:
    def test_linear_round_trip_through_json(self):
        model = LinearModel(bias=1.25, coefficients=[0.5, -2.0, 3.0])
        restored = model_from_dict(json.loads(json.dumps(model_to_dict(model))))
        assert restored == model

    def test_forest_document_shape(self):
        tree = Split(feature_index=2, threshold=0.4, left=Leaf(1.0), right=Leaf(3.0))
        doc = model_to_dict(ForestModel(trees=[tree], feature_importance=[0.0, 0.0, 1.0]))
        assert doc["type"] == "forest"
        assert doc["trees"][0] == {
            "split": {
                "feature_index": 2,
                "threshold": 0.4,
                "left": {"leaf": 1.0},
                "right": {"leaf": 3.0},
            }
        }

    def test_forest_restores_nested_trees(self):
        tree = Split(
            feature_index=0,
            threshold=0.5,
            left=Split(feature_index=1, threshold=0.2, left=Leaf(0.0), right=Leaf(1.0)),
            right=Leaf(2.0),
        )
        model = ForestModel(trees=[tree, Leaf(5.0)], feature_importance=[0.6, 0.4])
        assert model_from_dict(model_to_dict(model)) == model

    @pytest.mark.parametrize("doc", [
        None,
        [],
        {},
        {"type": "svm"},
        {"type": "linear", "bias": 1.0},
        {"type": "linear", "bias": "1.0", "coefficients": []},
        {"type": "forest", "trees": []},
        {"type": "forest", "trees": [{"branch": 1}]},
        {"type": "forest", "trees": [{"split": {"feature_index": -1, "threshold": 0,
                                                 "left": {"leaf": 0}, "right": {"leaf": 1}}}]},
    ])
    def test_malformed_documents_rejected(self, doc):
        with pytest.raises(ModelFormatError):
            model_from_dict(doc)

    def test_model_type_tags(self):
        assert LinearModel(0.0, []).model_type is ModelType.LINEAR
        assert ForestModel([Leaf(0.0)], []).model_type is ModelType.FOREST
        assert ModelType.FOREST.display_name == "Random Forest"


class TestErrors:
    def test_insufficient_data_payload(self):
        exc = InsufficientDataError(required=7, actual=3).with_target("hrv")
        assert exc.to_dict() == {
            "error": "insufficient_data",
            "target_id": "hrv",
            "message": "Need at least 7 days of data, have 3",
            "required": 7,
            "actual": 3,
        }

    def test_kinds(self):
        assert SingularMatrixError().kind == "singular_matrix"
        assert TrainingFailedError("boom", target_id="x").kind == "training_failed"
        assert TrainingFailedError("boom", target_id="x").target_id == "x"


class TestFeatures:
    def test_reference_layout(self):
        assert FEATURE_COUNT == 24
        assert feature_name(0) == "Eye Openness L"
        assert feature_name(23) == "Head Roll"
        assert feature_name(30) == "feature_30"

    def test_head_angle_normalization(self):
        assert normalize_head_angle(-45) == 0.0
        assert normalize_head_angle(0) == 0.5
        assert normalize_head_angle(45) == 1.0
