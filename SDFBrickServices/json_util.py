import copy
import json
import collections.abc
from enum import Enum

import numpy as np

from jsonschema import Draft4Validator, validators
from ruamel.yaml.comments import CommentedMap, CommentedSeq
from ruamel.yaml import YAML

# ruamel.yaml supports YAML 1.2, which has
# slightly better compatibility with json.
yaml = YAML(typ='rt')
yaml.default_flow_style = False


class Dict(dict):
    """
    This subclass allows us to tag dicts with a new attribute 'from_default'
    to indicate that the config sub-object was generated from scratch.
    (This is useful for figuring out which fields were user-provided and
    which were automatically supplied from the schema.)
    """
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.from_default = False


class ExtendedEncoder(json.JSONEncoder):
    """
    Encoder that handles objects that the built-in json library doesn't handle:

    - Numpy arrays and scalars are converted into their pure-python counterparts
      (No attempt is made to preserve bit-width information.)

    - All Mapping and Sequence types are converted to dict and list, respectively.
      (For example, ruamel.yaml.CommentedMap)

    - Enums are written as their value.

    Usage:

        >>> d = {"a": np.arange(3, dtype=np.uint32)}
        >>> json.dumps(d, cls=ExtendedEncoder)
        '{"a": [0, 1, 2]}'
    """
    def default(self, o):
        if isinstance(o, (np.ndarray, np.number)):
            return o.tolist()
        if isinstance(o, collections.abc.Mapping) and not isinstance(o, dict):
            return dict(o)
        if isinstance(o, collections.abc.Sequence) and not isinstance(o, (list, str, bytes)):
            return list(o)
        if isinstance(o, Enum):
            return o.value
        return super().default(o)

def json_dump(*args, **kwargs):
    """
    json.dump(), but using ExtendedEncoder, above.
    """
    if 'cls' not in kwargs:
        kwargs['cls'] = ExtendedEncoder
    return json.dump(*args, **kwargs)

def json_dumps(*args, **kwargs):
    """
    json.dumps(), but using ExtendedEncoder, above.
    """
    if 'cls' not in kwargs:
        kwargs['cls'] = ExtendedEncoder
    return json.dumps(*args, **kwargs)


def load_json_document(path):
    """
    Read and parse a JSON document from disk.

    Raises:
        OSError if the file can't be opened or read.
        ValueError (json.JSONDecodeError, UnicodeDecodeError) if it isn't JSON.
    """
    with open(path, 'r', encoding='utf-8') as f:
        return json.load(f)


def load_yaml_document(path):
    """
    Read a YAML (or JSON) document from disk, as ruamel.yaml CommentedMap/CommentedSeq.
    """
    with open(path, 'r', encoding='utf-8') as f:
        return yaml.load(f)


def _permissive_validator_class(cls):
    """
    By default, jsonschema expects JSON objects to be of type 'dict'.
    We also want to permit ruamel.yaml.comments.CommentedSeq and CommentedMap
    https://python-jsonschema.readthedocs.io/en/stable/validate/#validating-with-additional-types
    """
    type_checker = cls.TYPE_CHECKER.redefine_many({
        "object": lambda _checker, instance: isinstance(instance, (CommentedMap, dict)),
        # Can't use collections.abc.Sequence because that would catch strings, too!
        "array": lambda _checker, instance: isinstance(instance, (CommentedSeq, list, tuple)),
    })
    return validators.extend(cls, type_checker=type_checker)


def extend_with_default(validator_class):
    """
    This code was adapted from the jsonschema FAQ:
    http://python-jsonschema.readthedocs.org/en/latest/faq/
    """
    validate_properties = validator_class.VALIDATORS["properties"]

    def set_defaults_and_validate(validator, properties, instance, schema):
        for property, subschema in properties.items():
            if "default" in subschema:
                default = copy.deepcopy(subschema["default"])
                if isinstance(default, dict):
                    default = Dict(default)
                    default.from_default = True
                instance.setdefault(property, default)

        for error in validate_properties(validator, properties, instance, schema):
            yield error

    return validators.extend(validator_class, {"properties" : set_defaults_and_validate})

DefaultValidatingDraft4Validator = extend_with_default(_permissive_validator_class(Draft4Validator))


def validate(instance, schema, cls=None, *args, inject_defaults=False, **kwargs):
    """
    Drop-in replacement for jsonschema.validate(), with the following extended functionality:

    - Specifically allow types from ruamel.yaml.comments
    - If inject_defaults is True, this function *modifies* the instance IN-PLACE
      to fill missing properties with their schema-provided default values.

    See the jsonschema FAQ:
    http://python-jsonschema.readthedocs.org/en/latest/faq/
    """
    if cls is None:
        cls = validators.validator_for(schema, default=Draft4Validator)
    cls.check_schema(schema)
    cls = _permissive_validator_class(cls)

    if inject_defaults:
        # Add default-injection behavior to the validator
        cls = extend_with_default(cls)

    # Validate and inject defaults.
    cls(schema, *args, **kwargs).validate(instance)


def validate_and_inject_defaults(instance, schema, cls=None, *args, **kwargs):
    validate(instance, schema, cls, *args, inject_defaults=True, **kwargs)


_SchemaValidator = _permissive_validator_class(Draft4Validator)

def schema_errors(instance, schema):
    """
    Return ALL schema violations for the given instance (not just the first),
    ordered by their location within the instance.

    Unlike validate(), this never raises for an invalid instance.
    """
    errors = _SchemaValidator(schema).iter_errors(instance)
    return sorted(errors, key=lambda e: [str(p) for p in e.absolute_path])
