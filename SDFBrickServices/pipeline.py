"""Defines the ingestion pipeline driver.

The IngestPipeline runs the four ingestion stages in order
(manifest -> index -> payload -> volume), as configured by a YAML
or JSON config file, and stops at the first stage that fails.
"""
import os
import copy
import logging

from SDFBrickServices.errors import Outcome
from SDFBrickServices.json_util import validate_and_inject_defaults, load_yaml_document, load_json_document, json_dumps
from SDFBrickServices.util import Timer
from SDFBrickServices.io_util.manifest import load_manifest
from SDFBrickServices.io_util.bricks_index import load_bricks_index
from SDFBrickServices.io_util.bricks_data import load_bricks_bin
from SDFBrickServices.volume.sparse_volume import assemble_sparse_volume

logger = logging.getLogger(__name__)

STAGES = ("manifest", "index", "payload", "volume")

DEFAULT_BRICKS_INDEX_NAME = "bricks.index.json"
DEFAULT_BRICKS_BIN_NAME = "bricks.bin"


class PipelineResult:
    """
    The per-stage results of a pipeline run.
    Stages that were never reached are None.
    """
    def __init__(self):
        self.manifest_result = None
        self.index_result = None
        self.data_result = None
        self.volume = None
        self.outcome = Outcome.SUCCESS
        self.failed_stage = None

    @property
    def ok(self):
        return self.outcome is Outcome.SUCCESS

    @property
    def errors(self):
        errors = []
        for result in (self.manifest_result, self.index_result, self.data_result):
            if result is not None:
                errors.extend(result.errors)
        return errors

    def summary(self):
        """
        A JSON-serializable digest of the run.
        """
        summary = { "outcome": self.outcome,
                    "failed-stage": self.failed_stage,
                    "errors": [e._asdict() for e in self.errors] }
        if self.data_result is not None:
            summary["decoded-bricks"] = len(self.data_result.bricks)
        if self.volume is not None:
            summary["active-voxels"] = self.volume.active_voxel_count
            summary["active-bricks"] = len(self.volume.brick_coords())
        return summary


class IngestPipeline:
    """
    Validates and decodes a brick dataset (manifest, bricks index, bricks blob)
    into a SparseVolume, as specified by a config document.
    See ConfigSchema for the config format.
    """

    InputSchema = \
    {
        "type": "object",
        "description": "Input files",
        "required": ["manifest"],
        "additionalProperties": False,

        "properties": {
            "manifest": {
                "description": "Path to the manifest (project.json).\n"
                               "Relative paths are interpreted relative to the config file.",
                "type": "string",
                "minLength": 1
            },
            "bricks-index": {
                "description": "Path to the bricks index.\n"
                               f"If not provided, {DEFAULT_BRICKS_INDEX_NAME} in the manifest's directory is used.",
                "type": "string",
                "default": ""
            },
            "bricks-bin": {
                "description": "Path to the bricks payload blob.\n"
                               f"If not provided, {DEFAULT_BRICKS_BIN_NAME} in the manifest's directory is used.",
                "type": "string",
                "default": ""
            }
        }
    }

    OptionsSchema = \
    {
        "type": "object",
        "description": "Options",
        "default": {},
        "additionalProperties": False,

        "properties": {
            "decode-threads": {
                "description": "How many threads to use when decoding brick payloads.",
                "type": "integer",
                "minimum": 1,
                "default": 1
            },
            "log-level": {
                "description": "Log level for this package's loggers.",
                "type": "string",
                "enum": ["DEBUG", "INFO", "WARNING", "ERROR"],
                "default": "INFO"
            },
            "stop-after": {
                "description": "Stop after the given stage, even if it succeeded.",
                "type": "string",
                "enum": list(STAGES),
                "default": "volume"
            }
        }
    }

    ConfigSchema = \
    {
        "$schema": "http://json-schema.org/draft-04/schema#",
        "title": "SDF brick ingestion config",
        "type": "object",
        "required": ["input"],
        "additionalProperties": False,

        "properties": {
            "input": InputSchema,
            "options": OptionsSchema
        }
    }

    @classmethod
    def from_config_file(cls, config_path):
        """
        Load a .yml/.yaml or .json config file.
        Relative input paths in the config are resolved against the config file's directory.
        """
        config_path = os.path.abspath(config_path)
        ext = os.path.splitext(config_path)[1]
        if ext == '.json':
            config = load_json_document(config_path)
        elif ext in ('.yml', '.yaml'):
            config = load_yaml_document(config_path)
        else:
            raise RuntimeError(f"Unknown config file extension: {ext}")
        return cls(config, os.path.dirname(config_path))

    def __init__(self, config, config_dir=None):
        """
        Args:
            config: Config data (dict or CommentedMap). It is NOT modified.
            config_dir: Directory for resolving relative input paths (default: the current directory)

        Raises:
            jsonschema.ValidationError if the config is invalid.
        """
        self.config = copy.deepcopy(config)
        validate_and_inject_defaults(self.config, self.ConfigSchema)

        config_dir = config_dir or os.getcwd()
        input_config = self.config["input"]

        self.manifest_path = os.path.join(config_dir, input_config["manifest"])
        manifest_dir = os.path.dirname(self.manifest_path)

        if input_config["bricks-index"]:
            self.bricks_index_path = os.path.join(config_dir, input_config["bricks-index"])
        else:
            self.bricks_index_path = os.path.join(manifest_dir, DEFAULT_BRICKS_INDEX_NAME)

        if input_config["bricks-bin"]:
            self.bricks_bin_path = os.path.join(config_dir, input_config["bricks-bin"])
        else:
            self.bricks_bin_path = os.path.join(manifest_dir, DEFAULT_BRICKS_BIN_NAME)

    def run(self):
        """
        Run each stage in turn, stopping at the first failure (or at the 'stop-after' stage).

        Returns:
            PipelineResult.  Its outcome is the outcome of the first failing stage,
            or SUCCESS if every stage that ran succeeded.
        """
        options = self.config["options"]
        logging.getLogger('SDFBrickServices').setLevel(options["log-level"])
        last_stage = STAGES.index(options["stop-after"])

        result = PipelineResult()
        with Timer("Running ingestion pipeline", logger):
            self._run_stages(result, last_stage, options["decode-threads"])

        if result.ok:
            logger.info(f"Pipeline finished: {json_dumps(result.summary())}")
        else:
            logger.error(f"Pipeline failed in stage '{result.failed_stage}' ({result.outcome.value}) "
                         f"with {len(result.errors)} error(s)")
        return result

    def _run_stages(self, result, last_stage, decode_threads):
        def stage_failed(stage_name, stage_result):
            if stage_result.ok:
                return False
            result.outcome = stage_result.outcome
            result.failed_stage = stage_name
            return True

        result.manifest_result = load_manifest(self.manifest_path)
        if stage_failed("manifest", result.manifest_result) or last_stage == 0:
            return
        manifest = result.manifest_result.manifest

        result.index_result = load_bricks_index(self.bricks_index_path, manifest)
        if stage_failed("index", result.index_result) or last_stage == 1:
            return
        index = result.index_result.index

        result.data_result = load_bricks_bin(self.bricks_bin_path, index, manifest, decode_threads)
        if stage_failed("payload", result.data_result) or last_stage == 2:
            return

        result.volume = assemble_sparse_volume(manifest, result.data_result.bricks)
