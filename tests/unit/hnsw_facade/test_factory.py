"""Tests for engine selection and load dispatch."""

from dataclasses import replace

import numpy as np
import pytest
from hnsw_facade.config import DistanceMetric, IndexConfig
from hnsw_facade.engines.brute_force import BruteForceEngine
from hnsw_facade.engines.factory import (
    BACKEND_ENV_VAR,
    create_engine,
    engine_class_for,
    load_engine,
    resolve_backend,
)
from hnsw_facade.engines.hnsw import HnswlibEngine
from hnsw_facade.errors import InvalidInputError, LoadFailedError
from hnsw_facade.persistence import IndexFiles, read_payload, write_payload


class TestResolveBackend:
    """Tests for backend resolution."""

    def test_default_is_auto(self):
        """Without argument or env var the backend is auto."""
        assert resolve_backend() == "auto"

    def test_env_var(self, monkeypatch):
        """The env var selects the backend when no argument is given."""
        monkeypatch.setenv(BACKEND_ENV_VAR, " Brute_Force ")
        assert resolve_backend() == "brute_force"

    def test_argument_wins(self, monkeypatch):
        """An explicit argument overrides the env var."""
        monkeypatch.setenv(BACKEND_ENV_VAR, "brute_force")
        assert resolve_backend("hnsw") == "hnsw"

    def test_unknown_backend(self):
        """Unknown backends raise InvalidInputError."""
        with pytest.raises(InvalidInputError, match="Supported values"):
            resolve_backend("faiss")


class TestEngineClassFor:
    """Tests for metric dispatch."""

    @pytest.mark.parametrize(
        "metric, expected",
        [
            (DistanceMetric.L2, HnswlibEngine),
            (DistanceMetric.COSINE, HnswlibEngine),
            (DistanceMetric.DOT, HnswlibEngine),
            (DistanceMetric.L1, BruteForceEngine),
        ],
    )
    def test_auto(self, metric, expected):
        """auto uses hnswlib where it can and brute force for L1."""
        assert engine_class_for(metric, "auto") is expected

    @pytest.mark.parametrize("metric", list(DistanceMetric))
    def test_brute_force_serves_every_metric(self, metric):
        """The brute_force backend is used for every metric."""
        assert engine_class_for(metric, "brute_force") is BruteForceEngine

    def test_hnsw_rejects_l1(self):
        """Forcing hnsw with L1 raises InvalidInputError."""
        with pytest.raises(InvalidInputError, match="l1"):
            engine_class_for(DistanceMetric.L1, "hnsw")


class TestCreateAndLoad:
    """Tests for create_engine and load_engine."""

    def test_create_brute_force(self):
        """create_engine builds the selected engine class."""
        engine = create_engine(IndexConfig(dimension=3), backend="brute_force")

        assert isinstance(engine, BruteForceEngine)
        assert engine.get_dimension() == 3

    def test_create_from_env(self, monkeypatch):
        """create_engine honors the backend env var."""
        monkeypatch.setenv(BACKEND_ENV_VAR, "brute_force")
        engine = create_engine(IndexConfig(dimension=3, distance_metric=DistanceMetric.DOT))

        assert isinstance(engine, BruteForceEngine)
        assert engine.metric is DistanceMetric.DOT

    def test_load_dispatches_on_stored_kind(self, tmp_path, monkeypatch):
        """The engine kind in the data file decides which class reloads it."""
        engine = create_engine(IndexConfig(dimension=2), backend="brute_force")
        engine.insert_batch(np.array([[1.0, 0.0], [0.0, 1.0]]), [1, 2])
        engine.save(tmp_path, "idx")

        monkeypatch.setenv(BACKEND_ENV_VAR, "hnsw")
        loaded = load_engine(tmp_path, "idx", 2, DistanceMetric.L2)

        assert isinstance(loaded, BruteForceEngine)
        assert len(loaded) == 2

    def test_load_unknown_kind(self, tmp_path):
        """An unknown engine kind raises LoadFailedError."""
        engine = create_engine(IndexConfig(dimension=2), backend="brute_force")
        engine.insert(np.array([1.0, 0.0]), 1)
        engine.save(tmp_path, "idx")

        files = IndexFiles.at(tmp_path, "idx")
        payload = read_payload(files.data)
        write_payload(files.data, replace(payload, engine="annoy"))

        with pytest.raises(LoadFailedError, match="annoy"):
            load_engine(tmp_path, "idx", 2, DistanceMetric.L2)

    def test_load_missing_files(self, tmp_path):
        """Loading a basename with no files raises LoadFailedError."""
        with pytest.raises(LoadFailedError, match="not found"):
            load_engine(tmp_path, "nothing", 2, DistanceMetric.L2)
