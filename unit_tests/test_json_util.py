import json
import unittest
from io import StringIO

import numpy as np
from jsonschema import ValidationError
from ruamel.yaml import YAML

from SDFBrickServices.errors import Outcome
from SDFBrickServices.json_util import validate_and_inject_defaults, schema_errors, json_dumps, json_dump


class TestJsonUtil(unittest.TestCase):

    Schema = \
    {
        "type": "object",
        "required": ["name"],
        "properties": {
            "name": { "type": "string" },
            "options": {
                "type": "object",
                "default": {},
                "properties": {
                    "threads": { "type": "integer", "minimum": 1, "default": 1 },
                    "mode": { "type": "string", "default": "fast" }
                }
            }
        }
    }

    def test_inject_defaults(self):
        config = { "name": "test" }
        validate_and_inject_defaults(config, self.Schema)
        assert config["options"] == { "threads": 1, "mode": "fast" }
        assert config["options"].from_default

        config = { "name": "test", "options": { "threads": 4 } }
        validate_and_inject_defaults(config, self.Schema)
        assert config["options"] == { "threads": 4, "mode": "fast" }

    def test_invalid(self):
        with self.assertRaises(ValidationError):
            validate_and_inject_defaults({ "options": {} }, self.Schema)

        with self.assertRaises(ValidationError):
            validate_and_inject_defaults({ "name": "test", "options": { "threads": 0 } }, self.Schema)

    def test_ruamel_types(self):
        yaml = YAML(typ='rt')
        config = yaml.load(StringIO("name: test\noptions:\n  threads: 2\n"))
        validate_and_inject_defaults(config, self.Schema)
        assert config["options"]["mode"] == "fast"

    def test_schema_errors(self):
        schema = { "type": "array", "items": { "type": "integer", "minimum": 0 } }
        assert schema_errors([1, 2, 3], schema) == []

        errors = schema_errors([1, -2, 3, -4], schema)
        assert [list(e.absolute_path) for e in errors] == [[1], [3]]
        assert all(e.validator == "minimum" for e in errors)

    def test_json_dumps(self):
        data = { "array": np.arange(3, dtype=np.uint8),
                 "scalar": np.float32(1.5),
                 "tuple": (1, 2),
                 "outcome": Outcome.IO_FAILURE }
        assert json.loads(json_dumps(data)) == { "array": [0, 1, 2],
                                                 "scalar": 1.5,
                                                 "tuple": [1, 2],
                                                 "outcome": "io-failure" }

    def test_json_dump(self):
        f = StringIO()
        json_dump({ "a": np.int64(5) }, f)
        assert json.loads(f.getvalue()) == { "a": 5 }


if __name__ == "__main__":
    unittest.main()
