"""
Synthetic datasets for testing and debugging the ingestion pipeline.

debug_generate() produces a complete, valid (manifest, index, blob) triple
for a simple analytic shape, entirely in memory.
"""
import logging
import collections

import numpy as np

from SDFBrickServices.util import ceil_div, ndrange
from SDFBrickServices.io_util import schemas
from SDFBrickServices.io_util.codecs import crc32, format_crc32

logger = logging.getLogger(__name__)

DEBUG_SHAPES = ("sphere", "box")
DEBUG_HALF_WIDTH_VOXELS = 3
DEBUG_BACKGROUND_VALUE_MM = 1000.0

DebugDataset = collections.namedtuple('DebugDataset', 'manifest_document index_document blob')


def sphere_sdf(points, center, radius):
    """
    Signed distance from each point (N,3) to a sphere.
    """
    return np.linalg.norm(points - center, axis=-1) - radius


def box_sdf(points, center, half_extent):
    """
    Signed distance from each point (N,3) to an axis-aligned box.
    """
    d = np.abs(points - center) - half_extent
    outside = np.linalg.norm(np.maximum(d, 0.0), axis=-1)
    inside = np.minimum(d.max(axis=-1), 0.0)
    return outside + inside


def debug_manifest_document(dims, voxel_size, brick_size, dtype):
    """
    A valid manifest document (as parsed JSON) for a cubic grid at the origin.
    """
    voxel_size = float(np.float32(voxel_size))
    extent = float(np.float32(dims) * np.float32(voxel_size))
    return {
        "version": schemas.SUPPORTED_MANIFEST_VERSION,
        "coordinate_system": {
            "handedness": schemas.HANDEDNESS,
            "up_axis": schemas.UP_AXIS,
            "front_axis": schemas.FRONT_AXIS,
        },
        "units": schemas.UNITS,
        "aabb_min": [0.0, 0.0, 0.0],
        "aabb_size": [extent, extent, extent],
        "voxel_size": voxel_size,
        "dims": [dims, dims, dims],
        "sample_at": schemas.SAMPLE_AT,
        "axis_order": schemas.AXIS_ORDER,
        "distance_sign": schemas.DISTANCE_SIGN,
        "iso": 0.0,
        "adaptivity": 0.0,
        "narrow_band": { "half_width_voxels": DEBUG_HALF_WIDTH_VOXELS },
        "brick": { "size": brick_size },
        "dtype": dtype,
        "background_value_mm": DEBUG_BACKGROUND_VALUE_MM,
    }


def debug_generate(shape, dims=64, voxel_size=1.0, brick_size=64, dtype='f32'):
    """
    Generate a centered sphere (radius = 0.4 * extent) or box (half-extent = 0.3 * extent)
    signed distance field on a dims^3 grid, sampled at voxel centers.

    Distances are clamped to [-background, +background], and bricks whose voxels
    are all exactly the background value are omitted from the index.

    Returns:
        DebugDataset(manifest_document, index_document, blob)
        The documents are plain dicts (ready for json.dump) and the blob is bytes.
    """
    if shape not in DEBUG_SHAPES:
        raise ValueError(f"Unknown debug shape: {shape}")
    assert brick_size in schemas.SUPPORTED_BRICK_SIZES, f"Unsupported brick size: {brick_size}"
    assert dtype in schemas.DTYPE_SIZES, f"Unsupported dtype: {dtype}"

    manifest_document = debug_manifest_document(dims, voxel_size, brick_size, dtype)

    B = brick_size
    vs = np.float32(voxel_size)
    background = np.float32(DEBUG_BACKGROUND_VALUE_MM)
    extent = np.float32(dims) * vs
    center = np.full(3, extent * np.float32(0.5), dtype=np.float32)

    bricks_per_axis = ceil_div(dims, B)
    logger.info(f"Generating debug {shape}: dims={dims} voxel_size={voxel_size} "
                f"brick_size={B} bricks_per_axis={bricks_per_axis}")

    # Local voxel coordinates, x-fastest: row i is (lx, ly, lz) for i = lx + B*(ly + B*lz)
    lz, ly, lx = np.indices((B,B,B), dtype=np.float32).reshape(3, -1)
    local_xyz = np.stack((lx, ly, lz), axis=1)

    entries = []
    payloads = []
    offset = 0
    for bz, by, bx in ndrange((0,0,0), (bricks_per_axis,)*3):
        origin = np.array((bx, by, bz), dtype=np.float32) * B
        world = (local_xyz + origin + np.float32(0.5)) * vs

        if shape == "sphere":
            values = sphere_sdf(world, center, extent * np.float32(0.4))
        else:
            values = box_sdf(world, center, extent * np.float32(0.3))
        values = np.clip(values.astype(np.float32), -background, background)

        if (values == background).all():
            continue

        payload = values.astype('<f4' if dtype == 'f32' else '<f2').tobytes()
        entries.append({ "bx": bx, "by": by, "bz": bz,
                         "offset_bytes": offset,
                         "payload_bytes": len(payload),
                         "encoding": schemas.RAW_ENCODING,
                         "crc32": format_crc32(crc32(payload)) })
        payloads.append(payload)
        offset += len(payload)

    index_document = {
        "version": schemas.SUPPORTED_INDEX_VERSION,
        "brick_size": B,
        "dtype": dtype,
        "axis_order": schemas.AXIS_ORDER,
        "dims": [dims, dims, dims],
        "bricks": entries,
    }

    logger.info(f"Generated {len(entries)} of {bricks_per_axis**3} bricks ({offset} bytes)")
    return DebugDataset(manifest_document, index_document, b''.join(payloads))
