"""Tests for configuration, worker counts and the worker pool."""

import json
import os
import tempfile
from pathlib import Path

import pytest

from fastoc.config import THREAD_ENV_VAR, NetworkConfig, per_species, use_n_threads
from fastoc.exceptions import ConfigurationError, InvalidInput
from fastoc.pool import WorkerPool


def square(x):
    return x * x


def fail_on_three(x):
    if x == 3:
        raise ValueError("three")
    return x


class TestUseNThreads:
    """Test worker-count resolution."""

    def test_explicit(self, monkeypatch):
        monkeypatch.setenv(THREAD_ENV_VAR, "8")
        assert use_n_threads(3) == 3

    def test_environment(self, monkeypatch):
        monkeypatch.delenv(THREAD_ENV_VAR, raising=False)
        assert use_n_threads() == 1
        monkeypatch.setenv(THREAD_ENV_VAR, "")
        assert use_n_threads() == 1
        monkeypatch.setenv(THREAD_ENV_VAR, "4")
        assert use_n_threads() == 4
        monkeypatch.setenv(THREAD_ENV_VAR, "ALL_PROCESSORS")
        assert use_n_threads() == (os.cpu_count() or 1)
        monkeypatch.setenv(THREAD_ENV_VAR, "many")
        assert use_n_threads() == 2

    def test_negative(self):
        with pytest.raises(InvalidInput):
            use_n_threads(-1)


class TestNetworkConfig:
    """Test configuration validation and round trips."""

    def test_defaults(self):
        config = NetworkConfig()
        assert config.top_k == 5
        assert config.n_runs == 100
        assert config.min_mem == 10
        assert config.max_mem is None

    def test_validation(self):
        with pytest.raises(InvalidInput):
            NetworkConfig(top_k=0)
        with pytest.raises(ConfigurationError):
            NetworkConfig(min_mem=10, max_mem=5)
        with pytest.raises(ConfigurationError):
            NetworkConfig(executor="gpu")
        with pytest.raises(ConfigurationError):
            NetworkConfig(edge_method="spearman")

    def test_json_round_trip(self):
        config = NetworkConfig(top_k=7, seed=3, max_mem=500)
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "config.json"
            config.to_json(path)
            assert NetworkConfig.from_json(path) == config

    def test_bad_files(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "config.json"
            path.write_text(json.dumps({"top_k": 3, "unknown": 1}))
            with pytest.raises(ConfigurationError):
                NetworkConfig.from_json(path)
            path.write_text("{not json")
            with pytest.raises(ConfigurationError):
                NetworkConfig.from_json(path)
        with pytest.raises(FileNotFoundError):
            NetworkConfig.from_json("missing.json")

    def test_per_species(self):
        species = ["a", "b"]
        assert per_species(5, species, "x") == {"a": 5, "b": 5}
        assert per_species([1, 2], species, "x") == {"a": 1, "b": 2}
        assert per_species({"b": 2, "a": 1}, species, "x") == {"a": 1, "b": 2}
        with pytest.raises(ConfigurationError):
            per_species([1], species, "x")


class TestWorkerPool:
    """Test the worker pool."""

    @pytest.mark.parametrize("n_workers", [1, 3])
    def test_map_keeps_order(self, n_workers):
        with WorkerPool(n_workers) as pool:
            assert pool.map(square, range(10)) == [x * x for x in range(10)]

    def test_process_pool(self):
        with WorkerPool(2, kind="process") as pool:
            assert pool.map(abs, range(-3, 3)) == [3, 2, 1, 0, 1, 2]

    def test_errors_propagate(self):
        with WorkerPool(2) as pool:
            with pytest.raises(ValueError, match="three"):
                pool.map(fail_on_three, range(5))

    def test_serial_pool_has_no_executor(self):
        pool = WorkerPool(1).start()
        assert not pool.parallel
        assert pool._executor is None
        pool.close()

    def test_unknown_kind(self):
        with pytest.raises(ConfigurationError):
            WorkerPool(2, kind="gpu")
