from __future__ import annotations

from pathlib import Path

import pytest

from sdnext_benchmark.config import DEFAULT_CONFIG, ConfigLoadResult, load_config


def test_load_config_uses_defaults_without_overrides() -> None:
    config = load_config(environ={})

    assert config == DEFAULT_CONFIG
    assert config["sdnext"]["url"] == "http://localhost:7860"
    assert config["benchmark"]["size"] == 10
    assert config["benchmark"]["batch_size"] == 4


def test_environment_overrides_yaml_file(tmp_path: Path) -> None:
    config_path = tmp_path / "bench.yaml"
    config_path.write_text(
        "benchmark:\n  size: 50\n  batch_size: 2\nsdnext:\n  url: http://yaml:7860\n",
        encoding="utf-8",
    )

    result = load_config(
        config_path,
        environ={"BENCHMARK_SIZE": "-1", "QUEUE_NAME": "jobs"},
        include_sources=True,
    )

    assert isinstance(result, ConfigLoadResult)
    assert result.config["benchmark"]["size"] == -1
    assert result.config["benchmark"]["batch_size"] == 2
    assert result.config["sdnext"]["url"] == "http://yaml:7860"
    assert result.config["queue"]["name"] == "jobs"
    # untouched keys in a merged section survive
    assert result.config["benchmark"]["output_dir"] == "images"
    assert result.sources == (str(config_path.resolve()), "<environment>")


def test_config_path_can_come_from_environment(tmp_path: Path) -> None:
    config_path = tmp_path / "bench.yaml"
    config_path.write_text("reporting:\n  benchmark_id: run-7\n", encoding="utf-8")

    config = load_config(environ={"SDNEXT_BENCHMARK_CONFIG": str(config_path)})

    assert config["reporting"]["benchmark_id"] == "run-7"


def test_environment_values_are_coerced() -> None:
    config = load_config(
        environ={
            "BATCH_SIZE": "8",
            "REPORTING_AUTH_HEADER": "Salad-Api-Key",
            "REPORTING_API_KEY": "secret",
        }
    )

    assert config["benchmark"]["batch_size"] == 8
    assert config["auth"] == {"header": "Salad-Api-Key", "key": "secret"}


def test_empty_environment_value_unsets_key() -> None:
    config = load_config(environ={"BATCH_SIZE": ""})

    assert config["benchmark"]["batch_size"] is None


def test_invalid_environment_value_is_rejected() -> None:
    with pytest.raises(ValueError, match="BENCHMARK_SIZE"):
        load_config(environ={"BENCHMARK_SIZE": "lots"})


def test_yaml_root_must_be_mapping(tmp_path: Path) -> None:
    config_path = tmp_path / "bench.yaml"
    config_path.write_text("- one\n- two\n", encoding="utf-8")

    with pytest.raises(ValueError):
        load_config(config_path, environ={})


def test_load_config_does_not_mutate_defaults() -> None:
    config = load_config(environ={"SDNEXT_URL": "http://other:7860"})
    config["job"]["prompt"] = "dog"

    assert DEFAULT_CONFIG["sdnext"]["url"] == "http://localhost:7860"
    assert DEFAULT_CONFIG["job"]["prompt"] == "cat"
