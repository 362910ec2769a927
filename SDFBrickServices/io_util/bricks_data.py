"""Decoding of brick payloads from the binary blob (bricks.bin).

Each index entry addresses a byte range of the blob.  Entries are decoded
independently: a failure on one entry yields an error for that entry only,
and all other entries are still decoded.
"""
import os
import logging
import threading
import collections
from functools import partial
from multiprocessing.dummy import Pool as ThreadPool

from SDFBrickServices.errors import ( ValidationError, StageResult, log_errors,
                                      E_BIN_IO, E_INDEX_INCONSISTENT, E_PAYLOAD_SIZE,
                                      E_OFFSET_RANGE, E_CHECKSUM )
from SDFBrickServices.util import Timer
from . import schemas
from .codecs import crc32, format_crc32, DECODERS
from .bricks_index import entry_is_complete

logger = logging.getLogger(__name__)

DecodedBrick = collections.namedtuple('DecodedBrick', 'bx by bz values')
DecodedBrick.__doc__ = \
    """
    The voxels of one brick.

    values: float32 array of B^3 voxels, x-fastest,
            i.e. values[lx + B*(ly + B*lz)]
            (Equivalently, values.reshape((B,B,B))[lz,ly,lx])
    """

def decoded_brick_volume(brick, brick_size):
    """
    Return the brick's values as a 3D array, indexed [lz,ly,lx].
    """
    return brick.values.reshape((brick_size,)*3)


class BricksDataResult(StageResult):
    def __init__(self, bricks, errors, aborted=False):
        super().__init__(errors, aborted)
        self.bricks = bricks


class BlobReader:
    """
    Uniform random access to the blob, which may be given either as
    an in-memory bytes-like object or as an open binary file.

    Reads from a file are serialized with a lock, so a single
    BlobReader may be shared by several decoding threads.
    """
    def __init__(self, blob):
        self._lock = threading.Lock()
        if hasattr(blob, 'read') and hasattr(blob, 'seek'):
            self._file = blob
            self._buffer = None
            self._file.seek(0, os.SEEK_END)
            self.size = self._file.tell()
        else:
            self._file = None
            self._buffer = memoryview(blob).cast('B')
            self.size = len(self._buffer)

    def read(self, offset, nbytes):
        """
        Read up to nbytes at the given offset.
        May return fewer bytes if the blob is too short.
        """
        if self._buffer is not None:
            return bytes(self._buffer[offset:offset+nbytes])
        with self._lock:
            self._file.seek(offset)
            return self._file.read(nbytes)


def decode_bricks(blob, index, manifest, num_threads=1):
    """
    Decode every brick listed in the index.

    Args:
        blob:
            The concatenated brick payloads, either as a bytes-like
            object or as a binary file object opened for reading.
        index:
            BrickIndex
        manifest:
            Manifest
        num_threads:
            If greater than 1, entries are decoded concurrently in a thread pool.
            The results are identical (and in the same order) either way.

    Returns:
        BricksDataResult.  result.bricks contains a DecodedBrick for each
        entry that decoded cleanly, in index order, even if other entries failed.
        If neither the index nor the manifest provides a usable brick size and dtype,
        nothing is decoded and the result holds a single E_INDEX_INCONSISTENT error.
    """
    B = index.effective_brick_size(manifest)
    dtype = index.effective_dtype(manifest)
    if not B or dtype not in DECODERS:
        message = f"Can't decode bricks without a valid brick size and dtype (got {B}, {dtype!r})"
        return BricksDataResult([], [ValidationError(E_INDEX_INCONSISTENT, message)])

    reader = BlobReader(blob)
    decode_one = partial(_decode_entry, reader, B, dtype)

    entries = list(enumerate(index.bricks))
    if num_threads > 1 and len(entries) > 1:
        pool = ThreadPool(num_threads)
        try:
            outputs = pool.map(decode_one, entries)
        finally:
            # close the pool to further requests, and wait for any remaining threads
            pool.close()
            pool.join()
    else:
        outputs = list(map(decode_one, entries))

    bricks = []
    errors = []
    for brick, entry_errors in outputs:
        errors.extend(entry_errors)
        if brick is not None:
            bricks.append(brick)

    return BricksDataResult(bricks, errors)


def _decode_entry(reader, brick_size, dtype, i_entry):
    """
    Decode a single index entry.

    Returns:
        (DecodedBrick, []) on success, or (None, [error]) if the entry was skipped.
    """
    i, entry = i_entry
    prefix = f"bricks[{i}]"

    def skip(code, message):
        return None, [ValidationError(code, f"{prefix} {message}", prefix)]

    if not entry_is_complete(entry):
        return skip(E_INDEX_INCONSISTENT, "is malformed in the index; skipped")

    if entry.encoding != schemas.RAW_ENCODING:
        return skip(E_INDEX_INCONSISTENT, f"has unsupported encoding {entry.encoding!r}; skipped")

    expected_payload = brick_size**3 * schemas.DTYPE_SIZES[dtype]
    if entry.payload_bytes != expected_payload:
        return skip(E_PAYLOAD_SIZE, f"payload_bytes={entry.payload_bytes} != B^3*sizeof(dtype)={expected_payload}")

    if entry.offset_bytes < 0 or entry.offset_bytes + entry.payload_bytes > reader.size:
        return skip(E_OFFSET_RANGE, f"offset_bytes({entry.offset_bytes}) + payload_bytes({entry.payload_bytes}) "
                                    f"exceeds file size({reader.size})")

    try:
        raw = reader.read(entry.offset_bytes, entry.payload_bytes)
    except OSError as ex:
        return skip(E_BIN_IO, f"read failed at offset {entry.offset_bytes}: {ex}")

    if len(raw) != entry.payload_bytes:
        return skip(E_BIN_IO, f"short read at offset {entry.offset_bytes}: "
                              f"got {len(raw)} of {entry.payload_bytes} bytes")

    if entry.crc32 is not None:
        computed = crc32(raw)
        if computed != int(entry.crc32, 16):
            return skip(E_CHECKSUM, f"CRC32 mismatch: computed={format_crc32(computed)} expected={entry.crc32}")

    values = DECODERS[dtype](raw)
    return DecodedBrick(entry.bx, entry.by, entry.bz, values), []


def load_bricks_bin(path, index, manifest, num_threads=1):
    """
    Open the blob file and decode every brick listed in the index.
    See decode_bricks().

    If the file can't be opened at all, a single I/O error is returned (outcome IO_FAILURE).
    """
    try:
        f = open(path, 'rb')
    except OSError as ex:
        error = ValidationError(E_BIN_IO, f"Cannot open bricks.bin: {path} ({ex.strerror or ex})")
        log_errors([error], logger)
        return BricksDataResult([], [error], aborted=True)

    with f, Timer() as timer:
        result = decode_bricks(f, index, manifest, num_threads)

    logger.info(f"Decoded {len(result.bricks)} of {len(index.bricks)} bricks from {path} ({timer.seconds:.3f}s)")
    if not result.ok:
        log_errors(result.errors, logger)
    return result
