import os
import json
import textwrap

import numpy as np
import pytest
from jsonschema import ValidationError as ConfigValidationError

from SDFBrickServices.errors import Outcome, E_BIN_IO, E_ADAPTIVITY_RANGE
from SDFBrickServices.io_util.codecs import crc32, format_crc32
from SDFBrickServices.json_util import json_dump, json_dumps
from SDFBrickServices.debug_generate import debug_manifest_document, debug_generate
from SDFBrickServices.pipeline import IngestPipeline

BACKGROUND = 1000.0


def write_dataset(directory, values, dtype='f32', manifest_overrides=None):
    """
    Write a 64^3 dataset with a single 64^3 brick containing the given values (x-fastest).
    """
    os.makedirs(directory, exist_ok=True)
    manifest_document = debug_manifest_document(64, 1.0, 64, dtype)
    manifest_document.update(manifest_overrides or {})

    payload = values.astype('<f4' if dtype == 'f32' else '<f2').tobytes()
    index_document = { "version": 1,
                       "brick_size": 64,
                       "dtype": dtype,
                       "axis_order": "x-fastest",
                       "dims": [64, 64, 64],
                       "bricks": [{ "bx": 0, "by": 0, "bz": 0,
                                    "offset_bytes": 0,
                                    "payload_bytes": len(payload),
                                    "encoding": "raw",
                                    "crc32": format_crc32(crc32(payload)) }] }

    with open(f"{directory}/project.json", 'w') as f:
        json_dump(manifest_document, f, indent=2)
    with open(f"{directory}/bricks.index.json", 'w') as f:
        json_dump(index_document, f, indent=2)
    with open(f"{directory}/bricks.bin", 'wb') as f:
        f.write(payload)


def write_config(tmp_path, text):
    path = tmp_path / "config.yaml"
    path.write_text(textwrap.dedent(text))
    return str(path)


@pytest.fixture
def source_values():
    """
    Random values, with roughly half of the voxels set to the background.
    """
    rng = np.random.RandomState(0)
    values = rng.uniform(-2.0, 2.0, size=64**3).astype(np.float32)
    values[rng.uniform(size=64**3) < 0.5] = BACKGROUND
    return values


def test_end_to_end_f32(tmp_path, source_values):
    write_dataset(tmp_path / "data", source_values)
    config_path = write_config(tmp_path, """\
        input:
          manifest: data/project.json
        options:
          decode-threads: 2
        """)

    result = IngestPipeline.from_config_file(config_path).run()
    assert result.ok, result.errors
    assert result.outcome is Outcome.SUCCESS
    assert result.failed_stage is None

    bricks = result.data_result.bricks
    assert len(bricks) == 1
    assert bricks[0].values.shape == (262144,)
    assert (bricks[0].values == source_values).all()

    volume = result.volume
    expected_active = (source_values != BACKGROUND)
    assert volume.active_voxel_count == expected_active.sum()

    # active_coords() are in x-fastest order within the single brick
    x, y, z = volume.active_coords().transpose()
    assert (np.flatnonzero(expected_active) == x + 64*(y + 64*z)).all()
    assert (volume.active_values() == source_values[expected_active]).all()

    summary = json.loads(json_dumps(result.summary()))
    assert summary["outcome"] == "success"
    assert summary["active-voxels"] == expected_active.sum()


def test_end_to_end_f16(tmp_path):
    rng = np.random.RandomState(1)
    source_values = rng.uniform(0.5, 2.0, size=64**3).astype(np.float32)
    source_values *= rng.choice([-1, 1], size=64**3)

    write_dataset(tmp_path / "data", source_values, dtype='f16')
    assert os.path.getsize(tmp_path / "data" / "bricks.bin") == 64**3 * 2

    config_path = write_config(tmp_path, """\
        input:
          manifest: data/project.json
        """)
    result = IngestPipeline.from_config_file(config_path).run()
    assert result.ok, result.errors

    decoded = result.data_result.bricks[0].values
    assert decoded.shape == (262144,)
    assert (np.abs(decoded - source_values) / np.abs(source_values) < 0.01).all()


def test_stop_after(tmp_path, source_values):
    write_dataset(tmp_path / "data", source_values)
    config_path = write_config(tmp_path, """\
        input:
          manifest: data/project.json
        options:
          stop-after: index
        """)

    result = IngestPipeline.from_config_file(config_path).run()
    assert result.ok
    assert result.index_result.ok
    assert result.data_result is None
    assert result.volume is None


def test_manifest_failure(tmp_path, source_values):
    write_dataset(tmp_path / "data", source_values, manifest_overrides={"adaptivity": 2.0})
    config_path = write_config(tmp_path, """\
        input:
          manifest: data/project.json
        """)

    result = IngestPipeline.from_config_file(config_path).run()
    assert result.outcome is Outcome.VALIDATION_FAILURE
    assert result.failed_stage == "manifest"
    assert [e.code for e in result.errors] == [E_ADAPTIVITY_RANGE]
    assert result.index_result is None
    assert result.volume is None


def test_missing_bin(tmp_path, source_values):
    write_dataset(tmp_path / "data", source_values)
    os.unlink(tmp_path / "data" / "bricks.bin")

    config_path = write_config(tmp_path, """\
        input:
          manifest: data/project.json
        """)
    result = IngestPipeline.from_config_file(config_path).run()
    assert result.outcome is Outcome.IO_FAILURE
    assert result.failed_stage == "payload"
    assert [e.code for e in result.errors] == [E_BIN_IO]
    assert result.volume is None


def test_explicit_paths(tmp_path):
    dataset = debug_generate("box", 64, 1.0)
    with open(tmp_path / "manifest.json", 'w') as f:
        json_dump(dataset.manifest_document, f)
    with open(tmp_path / "catalog.json", 'w') as f:
        json_dump(dataset.index_document, f)
    with open(tmp_path / "payloads.dat", 'wb') as f:
        f.write(dataset.blob)

    config = { "input": { "manifest": "manifest.json",
                          "bricks-index": "catalog.json",
                          "bricks-bin": "payloads.dat" } }
    pipeline = IngestPipeline(config, str(tmp_path))
    assert pipeline.bricks_bin_path == os.path.join(str(tmp_path), "payloads.dat")

    # The caller's config is left untouched
    assert "options" not in config

    result = pipeline.run()
    assert result.ok, result.errors
    assert result.volume.get_value((32, 32, 32)) < 0
    assert result.volume.get_value((0, 0, 0)) > 0


def test_default_paths(tmp_path):
    pipeline = IngestPipeline({ "input": { "manifest": "data/project.json" } }, str(tmp_path))
    assert pipeline.bricks_index_path == os.path.join(str(tmp_path), "data", "bricks.index.json")
    assert pipeline.bricks_bin_path == os.path.join(str(tmp_path), "data", "bricks.bin")
    assert pipeline.config["options"]["decode-threads"] == 1
    assert pipeline.config["options"]["log-level"] == "INFO"
    assert pipeline.config["options"]["stop-after"] == "volume"


@pytest.mark.parametrize("config", [
    {},
    { "input": {} },
    { "input": { "manifest": "project.json" }, "options": { "decode-threads": 0 } },
    { "input": { "manifest": "project.json" }, "options": { "stop-after": "mesh" } },
    { "input": { "manifest": "project.json" }, "output": {} },
])
def test_invalid_config(config):
    with pytest.raises(ConfigValidationError):
        IngestPipeline(config)


def test_unknown_config_extension(tmp_path):
    path = tmp_path / "config.txt"
    path.write_text("input: {}")
    with pytest.raises(RuntimeError):
        IngestPipeline.from_config_file(str(path))


if __name__ == "__main__":
    pytest.main(['-s', '--tb=native', __file__])
