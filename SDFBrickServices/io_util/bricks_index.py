"""Parsing and validation of the brick catalog (bricks.index.json).

The index lists, for each stored brick, its brick-space coordinate and the
byte range of its payload within bricks.bin.  It is cross-checked against
an already-validated Manifest.
"""
import collections.abc
import logging

from SDFBrickServices.errors import ( ValidationError, StageResult, log_errors,
                                      E_INDEX_IO, E_INDEX_INCONSISTENT, E_DUPLICATE_BRICK,
                                      E_BRICK_OUT_OF_RANGE, E_PAYLOAD_SIZE )
from SDFBrickServices.json_util import load_json_document
from SDFBrickServices.util import Timer, ceil_div
from . import schemas
from .field_checks import check_field

logger = logging.getLogger(__name__)

BrickIndexEntry = collections.namedtuple('BrickIndexEntry',
    'bx by bz offset_bytes payload_bytes encoding crc32',
    defaults=(None,)*7)
BrickIndexEntry.__doc__ = \
    """
    One catalog row.
    crc32 is None if the entry carries no checksum.
    Any other field is None if it was missing or malformed in the index document.
    """

def entry_coord(entry):
    return (entry.bx, entry.by, entry.bz)

def entry_is_complete(entry):
    """
    True if the entry has everything needed to locate its payload.
    """
    return None not in (entry.bx, entry.by, entry.bz, entry.offset_bytes, entry.payload_bytes, entry.encoding)


BrickIndexNamedTuple = collections.namedtuple('BrickIndexNamedTuple',
    'version brick_size dtype axis_order dims bricks',
    defaults=(None, None, None, None, None, ()))

class BrickIndex(BrickIndexNamedTuple):
    """
    Immutable, parsed bricks index.

    Header fields are None if they were missing or malformed.
    'bricks' is a tuple of BrickIndexEntry, in document order, with duplicate
    coordinates removed (the first occurrence is kept).
    """
    __slots__ = ()

    def effective_brick_size(self, manifest):
        """
        The brick size declared by the index header, falling back to the manifest's.
        """
        if self.brick_size is not None and self.brick_size > 0:
            return self.brick_size
        return manifest.brick_size

    def effective_dtype(self, manifest):
        if self.dtype in schemas.DTYPE_SIZES:
            return self.dtype
        return manifest.dtype

    def effective_dims(self, manifest):
        if self.dims is not None:
            return self.dims
        return manifest.dims


class BrickIndexResult(StageResult):
    def __init__(self, index, errors, aborted=False):
        super().__init__(errors, aborted)
        self.index = index


def validate_bricks_index(document, manifest):
    """
    Validate an already-parsed bricks index document against the given Manifest.

    Every entry is checked and kept, regardless of the validity of its siblings,
    so that the payload decoder can still process the well-formed ones.
    The only exception is a repeated brick coordinate: only its first entry is kept.

    Returns:
        BrickIndexResult, with ALL detected problems in result.errors.
    """
    if not isinstance(document, collections.abc.Mapping):
        error = ValidationError(E_INDEX_IO, f"bricks index is not a JSON object (got {type(document).__name__})")
        return BrickIndexResult(BrickIndex(), [error], aborted=True)

    errors = []
    header = {}
    for spec in schemas.IndexHeaderFields:
        value, field_errors = check_field(document, spec)
        errors.extend(field_errors)
        header[spec.path] = value
    if header['dims'] is not None:
        header['dims'] = tuple(header['dims'])

    errors.extend( check_header_against_manifest(header, manifest) )

    partial_index = BrickIndex(**header)
    B = partial_index.effective_brick_size(manifest)
    dtype = partial_index.effective_dtype(manifest)
    dims = partial_index.effective_dims(manifest)

    expected_payload = None
    if B and dtype in schemas.DTYPE_SIZES:
        expected_payload = B**3 * schemas.DTYPE_SIZES[dtype]

    max_coord = None
    if B and dims is not None:
        max_coord = tuple(ceil_div(d, B) - 1 for d in dims)

    bricks = []
    raw_entries, field_errors = check_field(document, schemas.IndexBricksField)
    errors.extend(field_errors)

    seen = set()
    for i, raw_entry in enumerate(raw_entries or []):
        entry, entry_errors = parse_entry(i, raw_entry)
        errors.extend(entry_errors)
        errors.extend( check_entry(i, entry, expected_payload, max_coord) )

        coord = entry_coord(entry)
        if None not in coord:
            if coord in seen:
                errors.append( ValidationError(E_DUPLICATE_BRICK, f"bricks[{i}] duplicate brick {coord}", f"bricks[{i}]") )
                continue
            seen.add(coord)

        bricks.append(entry)

    index = partial_index._replace(bricks=tuple(bricks))
    return BrickIndexResult(index, errors)


def check_header_against_manifest(header, manifest):
    """
    Header fields that are present must agree with the manifest.
    """
    errors = []
    for name in ('brick_size', 'dtype', 'axis_order'):
        index_value = header[name]
        manifest_value = getattr(manifest, name)
        if index_value is not None and index_value != manifest_value:
            errors.append( ValidationError(E_INDEX_INCONSISTENT,
                                           f"{name} mismatch: index={index_value!r} manifest={manifest_value!r}",
                                           name) )

    if header['dims'] is not None:
        manifest_dims = manifest.dims or (None, None, None)
        for axis, (index_dim, manifest_dim) in enumerate(zip(header['dims'], manifest_dims)):
            if index_dim != manifest_dim:
                errors.append( ValidationError(E_INDEX_INCONSISTENT,
                                               f"dims[{axis}] mismatch: index={index_dim} manifest={manifest_dim}",
                                               "dims") )
    return errors


def parse_entry(i, raw_entry):
    """
    Parse one element of the 'bricks' array.

    Returns:
        (BrickIndexEntry, errors)
    """
    prefix = f"bricks[{i}]"
    if not isinstance(raw_entry, collections.abc.Mapping):
        error = ValidationError(E_INDEX_INCONSISTENT, f"{prefix} must be an object", prefix)
        return BrickIndexEntry(), [error]

    errors = []
    fields = {}
    for spec in schemas.BrickEntryFields:
        value, field_errors = check_field(raw_entry, spec, prefix=prefix + '.', field=prefix)
        errors.extend(field_errors)
        fields[spec.path] = value

    # offsets/sizes that violate their range constraint are unusable
    for name in ('offset_bytes', 'payload_bytes'):
        if fields[name] is not None and fields[name] < 0:
            fields[name] = None

    crc32, field_errors = check_field(raw_entry, schemas.BrickChecksumField, optional=True,
                                      prefix=prefix + '.', field=prefix)
    errors.extend(field_errors)
    if field_errors:
        crc32 = None
    fields['crc32'] = crc32

    return BrickIndexEntry(**fields), errors


def check_entry(i, entry, expected_payload, max_coord):
    """
    Per-entry checks against the index/manifest geometry:
    payload size (raw encoding only) and brick coordinate bounds.
    """
    prefix = f"bricks[{i}]"
    errors = []

    if ( entry.encoding == schemas.RAW_ENCODING
         and entry.payload_bytes is not None
         and expected_payload is not None
         and entry.payload_bytes != expected_payload ):
        errors.append( ValidationError(E_PAYLOAD_SIZE,
                                       f"{prefix}.payload_bytes={entry.payload_bytes} != "
                                       f"B^3*sizeof(dtype)={expected_payload}",
                                       prefix) )

    coord = entry_coord(entry)
    if max_coord is not None and None not in coord:
        if any(c < 0 or c > m for c, m in zip(coord, max_coord)):
            ranges = 'x'.join(f"[0,{m}]" for m in max_coord)
            errors.append( ValidationError(E_BRICK_OUT_OF_RANGE,
                                           f"{prefix} brick {coord} out of range {ranges}",
                                           prefix) )
    return errors


def load_bricks_index(path, manifest):
    """
    Read and validate a bricks index file.

    An unreadable file, or one that isn't valid JSON, yields a single
    I/O error (outcome IO_FAILURE).  Otherwise, see validate_bricks_index().
    """
    try:
        document = load_json_document(path)
    except OSError as ex:
        error = ValidationError(E_INDEX_IO, f"Cannot open bricks index: {path} ({ex.strerror or ex})")
        log_errors([error], logger)
        return BrickIndexResult(BrickIndex(), [error], aborted=True)
    except ValueError as ex:
        error = ValidationError(E_INDEX_IO, f"bricks index JSON parse error: {ex}")
        log_errors([error], logger)
        return BrickIndexResult(BrickIndex(), [error], aborted=True)

    with Timer() as timer:
        result = validate_bricks_index(document, manifest)

    if result.ok:
        logger.info(f"Loaded bricks index {path}: {len(result.index.bricks)} bricks ({timer.seconds:.3f}s)")
    else:
        logger.error(f"Bricks index {path} failed validation with {len(result.errors)} error(s)")
        log_errors(result.errors, logger)
    return result
