"""
Field-level schemas for the manifest (project.json) and bricks index (bricks.index.json).

Each FieldSpec pairs a document location with a small jsonschema fragment.
Structural violations of the fragment ('type', 'minItems', ...) are reported
with the FieldSpec's missing_code, and value constraints ('enum', 'minimum', ...)
are reported with its code, using its message template.

Message templates may use {label} (the field, or the offending array element,
e.g. 'dims[2]') and {value} (the offending value, JSON-formatted).
"""
import collections

from SDFBrickServices.errors import ( E_MANIFEST_FIELD, E_MANIFEST_CONSISTENCY, E_CONVENTION_MISMATCH,
                                      E_DISTANCE_SIGN, E_ADAPTIVITY_RANGE, E_BRICK_SIZE, E_BACKGROUND_VALUE,
                                      E_INDEX_INCONSISTENT )

SUPPORTED_MANIFEST_VERSION = 1
SUPPORTED_INDEX_VERSION = 1

SUPPORTED_BRICK_SIZES = (32, 64, 128)

# dtype name -> bytes per voxel
DTYPE_SIZES = { "f16": 2,
                "f32": 4 }

RAW_ENCODING = "raw"

# Fixed conventions (schema version 1 admits exactly one value for each)
HANDEDNESS = "right"
UP_AXIS = "Y"
FRONT_AXIS = "+Z"
UNITS = "mm"
SAMPLE_AT = "voxel_center"
AXIS_ORDER = "x-fastest"
DISTANCE_SIGN = "negative_inside_positive_outside"

# Tolerance for aabb_size == dims * voxel_size
CONSISTENCY_EPSILON_MM = 1e-6


FieldSpec = collections.namedtuple('FieldSpec', 'path schema code message missing_code',
                                   defaults=(E_MANIFEST_FIELD,))

def _float3(element_constraint=None):
    items = { "type": "number" }
    items.update(element_constraint or {})
    return { "type": "array", "items": items, "minItems": 3, "maxItems": 3 }

def _int3(element_constraint=None):
    items = { "type": "integer" }
    items.update(element_constraint or {})
    return { "type": "array", "items": items, "minItems": 3, "maxItems": 3 }

def _fixed(value):
    # No 'type' here: a value of the wrong type is a convention mismatch, not a missing field.
    return { "enum": [value] }


##
## Manifest
##

ManifestVersionField = FieldSpec( "version",
                                  { "type": "integer", "enum": [SUPPORTED_MANIFEST_VERSION] },
                                  E_MANIFEST_FIELD,
                                  "Unsupported manifest version: {value}" )

CoordinateSystemFields = [
    FieldSpec( "coordinate_system.handedness", _fixed(HANDEDNESS), E_CONVENTION_MISMATCH,
               f'handedness must be "{HANDEDNESS}", got: {{value}}' ),
    FieldSpec( "coordinate_system.up_axis", _fixed(UP_AXIS), E_CONVENTION_MISMATCH,
               f'up_axis must be "{UP_AXIS}", got: {{value}}' ),
    FieldSpec( "coordinate_system.front_axis", _fixed(FRONT_AXIS), E_CONVENTION_MISMATCH,
               f'front_axis must be "{FRONT_AXIS}", got: {{value}}' ),
]

ConventionFields = [
    FieldSpec( "units", _fixed(UNITS), E_CONVENTION_MISMATCH,
               f'units must be "{UNITS}", got: {{value}}' ),
    FieldSpec( "sample_at", _fixed(SAMPLE_AT), E_CONVENTION_MISMATCH,
               f'sample_at must be "{SAMPLE_AT}", got: {{value}}' ),
    FieldSpec( "axis_order", _fixed(AXIS_ORDER), E_CONVENTION_MISMATCH,
               f'axis_order must be "{AXIS_ORDER}", got: {{value}}' ),
    FieldSpec( "distance_sign", _fixed(DISTANCE_SIGN), E_DISTANCE_SIGN,
               f'distance_sign must be "{DISTANCE_SIGN}", got: {{value}}' ),
]

GeometryFields = [
    FieldSpec( "aabb_min", _float3(), E_MANIFEST_CONSISTENCY, "" ),
    FieldSpec( "aabb_size", _float3({ "minimum": 0, "exclusiveMinimum": True }), E_MANIFEST_CONSISTENCY,
               "{label} must be > 0, got: {value}" ),
    FieldSpec( "voxel_size", { "type": "number", "minimum": 0, "exclusiveMinimum": True }, E_MANIFEST_CONSISTENCY,
               "voxel_size must be > 0, got: {value}" ),
    FieldSpec( "dims", _int3({ "minimum": 0, "exclusiveMinimum": True }), E_MANIFEST_CONSISTENCY,
               "{label} must be > 0, got: {value}" ),
]

LevelSetFields = [
    FieldSpec( "iso", { "type": "number" }, E_MANIFEST_CONSISTENCY, "" ),
    FieldSpec( "adaptivity", { "type": "number", "minimum": 0.0, "maximum": 1.0 }, E_ADAPTIVITY_RANGE,
               "adaptivity must be in [0.0, 1.0], got: {value}" ),
]

NarrowBandField = FieldSpec( "narrow_band.half_width_voxels", { "type": "integer", "minimum": 1 },
                             E_MANIFEST_CONSISTENCY,
                             "narrow_band.half_width_voxels must be >= 1, got: {value}" )

BrickSizeField = FieldSpec( "brick.size", { "type": "integer", "enum": list(SUPPORTED_BRICK_SIZES) },
                            E_BRICK_SIZE,
                            "brick.size must be 32, 64, or 128, got: {value}" )

DtypeField = FieldSpec( "dtype", { "type": "string", "enum": sorted(DTYPE_SIZES.keys()) },
                        E_MANIFEST_CONSISTENCY,
                        'dtype must be "f16" or "f32", got: {value}' )

BackgroundField = FieldSpec( "background_value_mm", { "type": "number", "minimum": 0, "exclusiveMinimum": True },
                             E_BACKGROUND_VALUE,
                             "background_value_mm must be > 0, got: {value}" )

# Every hash is optional, but if one is given it must be a string.
HashFields = [
    FieldSpec( f"hashes.{name}", { "type": "string" }, E_MANIFEST_FIELD, "" )
    for name in ("manifest_sha256", "bricks_bin_sha256", "bricks_index_sha256")
]


##
## Bricks index
##

IndexHeaderFields = [
    FieldSpec( "version", { "type": "integer", "enum": [SUPPORTED_INDEX_VERSION] }, E_INDEX_INCONSISTENT,
               "Unsupported bricks index version: {value}", E_INDEX_INCONSISTENT ),
    FieldSpec( "brick_size", { "type": "integer" }, E_INDEX_INCONSISTENT, "", E_INDEX_INCONSISTENT ),
    FieldSpec( "dtype", { "type": "string" }, E_INDEX_INCONSISTENT, "", E_INDEX_INCONSISTENT ),
    FieldSpec( "axis_order", { "type": "string", "enum": [AXIS_ORDER] }, E_INDEX_INCONSISTENT,
               f'axis_order must be "{AXIS_ORDER}", got: {{value}}', E_INDEX_INCONSISTENT ),
    FieldSpec( "dims", _int3(), E_INDEX_INCONSISTENT, "", E_INDEX_INCONSISTENT ),
]

IndexBricksField = FieldSpec( "bricks", { "type": "array" }, E_INDEX_INCONSISTENT, "", E_INDEX_INCONSISTENT )

BrickEntryFields = [
    FieldSpec( "bx", { "type": "integer" }, E_INDEX_INCONSISTENT, "", E_INDEX_INCONSISTENT ),
    FieldSpec( "by", { "type": "integer" }, E_INDEX_INCONSISTENT, "", E_INDEX_INCONSISTENT ),
    FieldSpec( "bz", { "type": "integer" }, E_INDEX_INCONSISTENT, "", E_INDEX_INCONSISTENT ),
    FieldSpec( "offset_bytes", { "type": "integer", "minimum": 0 }, E_INDEX_INCONSISTENT,
               "{label} must be >= 0, got: {value}", E_INDEX_INCONSISTENT ),
    FieldSpec( "payload_bytes", { "type": "integer", "minimum": 0 }, E_INDEX_INCONSISTENT,
               "{label} must be >= 0, got: {value}", E_INDEX_INCONSISTENT ),
    FieldSpec( "encoding", { "type": "string", "enum": [RAW_ENCODING] }, E_INDEX_INCONSISTENT,
               f'{{label}} must be "{RAW_ENCODING}", got: {{value}}', E_INDEX_INCONSISTENT ),
]

# Optional.  If present, it must be a hex CRC32 string (an empty string is NOT the same as 'absent').
BrickChecksumField = FieldSpec( "crc32", { "type": "string", "pattern": "^[0-9a-fA-F]{1,8}$" }, E_INDEX_INCONSISTENT,
                                "{label} must be a hex CRC32 string, got: {value}", E_INDEX_INCONSISTENT )
