"""
Independent per-field checks.

Every check returns its findings as values (a possibly-empty list of
ValidationError), never by appending to shared state.  The validators
simply concatenate the lists from all of their checks.
"""
import math
import collections.abc

from SDFBrickServices.errors import ValidationError, E_MANIFEST_FIELD
from SDFBrickServices.json_util import schema_errors, json_dumps

# Schema keywords whose violation means the field is malformed, rather than out-of-range.
STRUCTURAL_KEYWORDS = frozenset(['type', 'minItems', 'maxItems', 'items', 'required'])

_MISSING = object()


def lookup(document, path):
    """
    Fetch a dotted path (e.g. 'narrow_band.half_width_voxels') from nested mappings.
    Returns the _MISSING sentinel if any component is absent.
    """
    node = document
    for key in path.split('.'):
        if not isinstance(node, collections.abc.Mapping) or key not in node:
            return _MISSING
        node = node[key]
    return node


def check_section(document, name, code=E_MANIFEST_FIELD, optional=False):
    """
    Check that a nested object (e.g. 'coordinate_system') exists.
    Returns a list of errors.
    """
    value = lookup(document, name)
    if value is _MISSING:
        if optional:
            return []
        return [ValidationError(code, f"Missing required field: {name}", name)]
    if not isinstance(value, collections.abc.Mapping):
        return [ValidationError(code, f"Missing or invalid {name} (expected object)", name)]
    return []


def check_field(document, spec, optional=False, prefix="", field=None):
    """
    Check a single field against its FieldSpec (see schemas.py).

    Args:
        document: The (sub-)document containing the field
        spec: FieldSpec
        optional: If True, an absent field is not an error.
        prefix: Prepended to the field path in messages, e.g. 'bricks[3].'
        field: The field name recorded in the errors (default: spec.path)

    Returns:
        (value, errors)
        value is None if the field is absent or structurally invalid.
        Otherwise the raw value is returned, even if it violates a value
        constraint (in which case errors is non-empty).
    """
    label = prefix + spec.path
    if field is None:
        field = spec.path

    value = lookup(document, spec.path)
    if value is _MISSING:
        if optional:
            return None, []
        return None, [ValidationError(spec.missing_code, f"Missing required field: {label}", field)]

    violations = schema_errors(value, spec.schema)
    structural = [v for v in violations if v.validator in STRUCTURAL_KEYWORDS]
    if structural or not _all_finite(value):
        message = f"Missing or invalid {label} (expected {describe_schema(spec.schema)})"
        return None, [ValidationError(spec.missing_code, message, field)]

    errors = []
    for violation in violations:
        element_label = label + ''.join(f'[{p}]' for p in violation.absolute_path)
        message = spec.message.format(label=element_label, value=json_dumps(violation.instance))
        errors.append(ValidationError(spec.code, message, field))
    return value, errors


def describe_schema(schema):
    """
    Short human-readable type description for messages, e.g. 'float[3]'.
    """
    names = { "number": "float",
              "integer": "int",
              "string": "string",
              "array": "array",
              "object": "object" }

    t = schema.get("type")
    if t == "array" and "items" in schema and "minItems" in schema:
        return "{}[{}]".format(names.get(schema["items"].get("type"), "value"), schema["minItems"])
    if t is None:
        return " or ".join(json_dumps(v) for v in schema.get("enum", []))
    return names.get(t, t)


def _all_finite(value):
    if isinstance(value, float):
        return math.isfinite(value)
    if isinstance(value, (list, tuple)):
        return all(map(_all_finite, value))
    return True
