"""Parsing and validation of the volume manifest (project.json).

The manifest is the single source of truth for the volume's geometry
and brick encoding.  Validation accumulates every problem it can find
(see errors.py); only an unreadable or unparseable document aborts early.
"""
import collections.abc
import logging

import numpy as np

from SDFBrickServices.errors import ( ValidationError, StageResult, log_errors,
                                      E_MANIFEST_IO, E_MANIFEST_CONSISTENCY, E_BACKGROUND_VALUE )
from SDFBrickServices.json_util import load_json_document
from SDFBrickServices.util import Timer, ceil_div
from . import schemas
from .field_checks import check_field, check_section

logger = logging.getLogger(__name__)

ManifestNamedTuple = collections.namedtuple('ManifestNamedTuple',
    'version handedness up_axis front_axis units '
    'aabb_min aabb_size voxel_size dims '
    'sample_at axis_order distance_sign '
    'iso adaptivity half_width_voxels '
    'brick_size dtype background_value_mm '
    'manifest_sha256 bricks_bin_sha256 bricks_index_sha256',
    defaults=(None,)*21)

class Manifest(ManifestNamedTuple):
    """
    Immutable, parsed manifest.

    Floating-point geometry values are rounded to single precision on parsing,
    since the decoded voxel data (and therefore the background comparison) is float32.
    Fields that were missing or malformed in the source document are None.
    """
    __slots__ = ()

    @property
    def dtype_size(self):
        return schemas.DTYPE_SIZES.get(self.dtype)

    @property
    def voxels_per_brick(self):
        return self.brick_size ** 3

    @property
    def bricks_per_axis(self):
        """
        Number of bricks needed to cover the volume, per axis (x,y,z).
        """
        return tuple(ceil_div(d, self.brick_size) for d in self.dims)


class ManifestResult(StageResult):
    def __init__(self, manifest, errors, aborted=False):
        super().__init__(errors, aborted)
        self.manifest = manifest


def validate_manifest(document):
    """
    Validate an already-parsed manifest document.

    Returns:
        ManifestResult, with ALL detected problems in result.errors.
        Never raises for malformed content.
    """
    if not isinstance(document, collections.abc.Mapping):
        error = ValidationError(E_MANIFEST_IO, f"Manifest is not a JSON object (got {type(document).__name__})")
        return ManifestResult(Manifest(), [error], aborted=True)

    errors = []
    fields = {}

    def check(spec, name, convert=None, **kwargs):
        value, field_errors = check_field(document, spec, **kwargs)
        errors.extend(field_errors)
        if value is not None and convert is not None:
            value = convert(value)
        fields[name] = value
        return not field_errors

    def check_float32(spec, name, code=E_MANIFEST_CONSISTENCY, positive=False):
        # The rounded value must still satisfy the field's bounds.
        ok = check(spec, name)
        raw = fields[name]
        if raw is None:
            return False
        fields[name] = _float32_tuple(raw) if isinstance(raw, list) else _float32(raw)
        if not ok:
            return False
        range_errors = check_single_precision(name, raw, fields[name], code, positive)
        if range_errors:
            errors.extend(range_errors)
            fields[name] = None
        return not range_errors

    check(schemas.ManifestVersionField, 'version')

    # coordinate_system
    section_errors = check_section(document, "coordinate_system")
    errors.extend(section_errors)
    if not section_errors:
        for spec in schemas.CoordinateSystemFields:
            check(spec, spec.path.split('.')[-1])

    for spec in schemas.ConventionFields:
        check(spec, spec.path)

    # geometry
    aabb_min_ok = check_float32(schemas.GeometryFields[0], 'aabb_min')
    aabb_size_ok = check_float32(schemas.GeometryFields[1], 'aabb_size', positive=True)
    voxel_size_ok = check_float32(schemas.GeometryFields[2], 'voxel_size', positive=True)
    dims_ok = check(schemas.GeometryFields[3], 'dims', tuple)

    # level set
    check_float32(schemas.LevelSetFields[0], 'iso')
    check_float32(schemas.LevelSetFields[1], 'adaptivity')

    section_errors = check_section(document, "narrow_band")
    errors.extend(section_errors)
    half_width_ok = not section_errors and check(schemas.NarrowBandField, 'half_width_voxels')

    section_errors = check_section(document, "brick")
    errors.extend(section_errors)
    if not section_errors:
        check(schemas.BrickSizeField, 'brick_size')

    check(schemas.DtypeField, 'dtype')
    background_ok = check_float32(schemas.BackgroundField, 'background_value_mm', E_BACKGROUND_VALUE, positive=True)

    # hashes (all optional)
    section_errors = check_section(document, "hashes", optional=True)
    errors.extend(section_errors)
    if not section_errors:
        for spec in schemas.HashFields:
            check(spec, spec.path.split('.')[-1], optional=True)

    # Cross-field consistency, only where the inputs are themselves valid.
    if aabb_min_ok and aabb_size_ok and voxel_size_ok and dims_ok:
        errors.extend( check_aabb_consistency(fields['aabb_size'], fields['dims'], fields['voxel_size']) )

    if background_ok and half_width_ok and voxel_size_ok:
        errors.extend( check_background_band(fields['background_value_mm'],
                                             fields['half_width_voxels'],
                                             fields['voxel_size']) )

    return ManifestResult(Manifest(**fields), errors)


def check_aabb_consistency(aabb_size, dims, voxel_size):
    """
    aabb_size[i] must equal dims[i] * voxel_size (in single precision, within a fixed epsilon).
    """
    errors = []
    epsilon = np.float32(schemas.CONSISTENCY_EPSILON_MM)
    for axis in range(3):
        expected = np.float32(dims[axis]) * np.float32(voxel_size)
        if abs(np.float32(aabb_size[axis]) - expected) > epsilon:
            message = (f"aabb_size[{axis}]={aabb_size[axis]:.6f} != "
                       f"dims[{axis}]*voxel_size={float(expected):.6f}")
            errors.append(ValidationError(E_MANIFEST_CONSISTENCY, message, "aabb_size"))
    return errors


def check_background_band(background_value_mm, half_width_voxels, voxel_size):
    """
    The background value must lie outside the narrow band,
    i.e. background_value_mm >= half_width_voxels * voxel_size
    """
    band_mm = np.float32(half_width_voxels) * np.float32(voxel_size)
    if np.float32(background_value_mm) < band_mm:
        message = (f"background_value_mm ({background_value_mm:.6f}) must be >= "
                   f"narrow_band.half_width_voxels * voxel_size ({float(band_mm):.6f})")
        return [ValidationError(E_BACKGROUND_VALUE, message, "background_value_mm")]
    return []


def check_single_precision(name, value, rounded, code, positive=False):
    """
    Check a field after rounding to float32.
    Values beyond the float32 range become inf, and tiny ones become 0.0.
    """
    components = rounded if isinstance(rounded, tuple) else (rounded,)
    if not np.isfinite(components).all():
        message = f"{name} is not representable in single precision, got: {value}"
        return [ValidationError(code, message, name)]
    if positive and min(components) <= 0:
        message = f"{name} must be > 0 in single precision, got: {value}"
        return [ValidationError(code, message, name)]
    return []


def load_manifest(path):
    """
    Read and validate a manifest file.

    An unreadable file, or one that isn't valid JSON, yields a single
    I/O error (outcome IO_FAILURE).  Otherwise, see validate_manifest().
    """
    try:
        document = load_json_document(path)
    except OSError as ex:
        error = ValidationError(E_MANIFEST_IO, f"Cannot open manifest: {path} ({ex.strerror or ex})")
        log_errors([error], logger)
        return ManifestResult(Manifest(), [error], aborted=True)
    except ValueError as ex:
        error = ValidationError(E_MANIFEST_IO, f"Manifest JSON parse error: {ex}")
        log_errors([error], logger)
        return ManifestResult(Manifest(), [error], aborted=True)

    with Timer() as timer:
        result = validate_manifest(document)

    if result.ok:
        m = result.manifest
        logger.info(f"Loaded manifest {path}: dims={list(m.dims)} voxel_size={m.voxel_size} "
                    f"brick_size={m.brick_size} dtype={m.dtype} ({timer.seconds:.3f}s)")
    else:
        logger.error(f"Manifest {path} failed validation with {len(result.errors)} error(s)")
        log_errors(result.errors, logger)
    return result


def _float32(value):
    with np.errstate(over='ignore'):
        return float(np.float32(value))

def _float32_tuple(values):
    return tuple(map(_float32, values))
