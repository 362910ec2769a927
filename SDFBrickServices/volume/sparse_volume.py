"""
Sparse storage for the assembled distance field.

The volume is tiled by the same brick grid as the input.  Within each brick,
only voxels whose value differs from the background are stored; bricks that
contain no such voxels (or that were never provided) take no storage at all,
and every query that lands in them returns the background value.
"""
import logging

import numpy as np

from SDFBrickServices.util import box_intersection, box_to_slicing

logger = logging.getLogger(__name__)


class LinearTransform:
    """
    Index-space to world-space mapping: uniform scale by voxel_size,
    then translation, so that index (0,0,0) maps to the translation (aabb_min).
    """
    def __init__(self, voxel_size, translation=(0.0, 0.0, 0.0)):
        self.voxel_size = float(voxel_size)
        self.translation = np.asarray(translation, dtype=np.float64)
        assert self.voxel_size > 0, f"voxel_size must be positive, not {voxel_size}"
        assert self.translation.shape == (3,)

    def __repr__(self):
        return f"LinearTransform(voxel_size={self.voxel_size}, translation={self.translation.tolist()})"

    def index_to_world(self, ijk):
        """
        ijk: (x,y,z) or array of shape (N,3)
        """
        return np.asarray(ijk, dtype=np.float64) * self.voxel_size + self.translation

    def world_to_index(self, xyz):
        """
        Inverse of index_to_world().  The result is continuous (not rounded).
        """
        return (np.asarray(xyz, dtype=np.float64) - self.translation) / self.voxel_size

    def matrix(self):
        """
        4x4 affine matrix (column-vector convention).
        """
        m = np.eye(4)
        m[:3, :3] *= self.voxel_size
        m[:3, 3] = self.translation
        return m


class SparseVolume:
    """
    A queryable, brick-sparse scalar volume.

    Coordinates are global integer voxel coordinates (x,y,z).
    Internally, each non-empty brick is stored as a sorted array of the
    x-fastest linear indices of its materialized voxels, plus their values.
    """
    def __init__(self, background, transform, brick_size, dims=None, metadata=None):
        self.background = np.float32(background)
        self.transform = transform
        self.brick_size = int(brick_size)
        self.dims = None if dims is None else tuple(dims)
        self.metadata = dict(metadata or {})

        # brick coord (bx,by,bz) -> (linear_indices, values)
        self._bricks = {}

    def __repr__(self):
        return (f"SparseVolume(background={float(self.background)}, brick_size={self.brick_size}, "
                f"bricks={len(self._bricks)}, active_voxels={self.active_voxel_count})")

    def insert_brick(self, brick_coord, values):
        """
        Store the non-background voxels of one dense brick.

        brick_coord: (bx,by,bz)
        values: B^3 values in x-fastest order.
                A voxel is stored only if its value is not exactly equal to the background.

        Returns the number of voxels stored.
        """
        brick_coord = tuple(int(c) for c in brick_coord)
        if brick_coord in self._bricks:
            raise ValueError(f"Brick {brick_coord} was already inserted")

        values = np.asarray(values, dtype=np.float32).reshape(-1)
        assert values.size == self.brick_size**3, \
            f"Brick {brick_coord} has {values.size} voxels, expected {self.brick_size**3}"

        # Exact comparison: voxels written as the background constant are never stored.
        linear_indices = np.flatnonzero(values != self.background)
        if len(linear_indices) == 0:
            return 0

        self._bricks[brick_coord] = (linear_indices, values[linear_indices].copy())
        return len(linear_indices)

    @property
    def active_voxel_count(self):
        return sum(len(indices) for indices, _values in self._bricks.values())

    def brick_coords(self):
        """
        The coordinates of all bricks that hold at least one materialized voxel, sorted.
        """
        return sorted(self._bricks.keys())

    def _locate(self, ijk):
        """
        Returns the stored (indices, values) for the brick containing ijk (or None),
        and the voxel's x-fastest linear index within that brick.
        """
        B = self.brick_size
        brick_coord = tuple(int(c) // B for c in ijk)
        lx, ly, lz = (int(c) - bc*B for c, bc in zip(ijk, brick_coord))
        return self._bricks.get(brick_coord), lx + B*(ly + B*lz)

    def get_value(self, ijk):
        """
        Value at global voxel coordinate (x,y,z),
        or the background if nothing is stored there.
        """
        stored, linear = self._locate(ijk)
        if stored is None:
            return float(self.background)

        indices, values = stored
        pos = np.searchsorted(indices, linear)
        if pos < len(indices) and indices[pos] == linear:
            return float(values[pos])
        return float(self.background)

    def is_active(self, ijk):
        stored, linear = self._locate(ijk)
        if stored is None:
            return False
        indices = stored[0]
        pos = np.searchsorted(indices, linear)
        return bool(pos < len(indices) and indices[pos] == linear)

    def active_coords(self):
        """
        Global (x,y,z) coordinates of all materialized voxels, as an (N,3) array,
        ordered by brick (see brick_coords()) and then x-fastest within each brick.
        """
        B = self.brick_size
        coords = [np.zeros((0,3), dtype=np.int64)]
        for brick_coord in self.brick_coords():
            indices, _values = self._bricks[brick_coord]
            lz, rem = np.divmod(indices, B*B)
            ly, lx = np.divmod(rem, B)
            local = np.stack((lx, ly, lz), axis=1)
            coords.append(local + np.asarray(brick_coord, dtype=np.int64) * B)
        return np.concatenate(coords)

    def active_values(self):
        """
        Values of all materialized voxels, in the same order as active_coords().
        """
        values = [np.zeros((0,), dtype=np.float32)]
        for brick_coord in self.brick_coords():
            values.append(self._bricks[brick_coord][1])
        return np.concatenate(values)

    def bounding_box(self):
        """
        The (x,y,z) box [start, stop) covering the volume's dims, if known,
        otherwise the bricks that hold materialized voxels.
        """
        if self.dims is not None:
            return np.array([(0,0,0), self.dims])
        if not self._bricks:
            return np.zeros((2,3), dtype=int)
        brick_coords = np.array(self.brick_coords())
        return np.array([brick_coords.min(axis=0), brick_coords.max(axis=0) + 1]) * self.brick_size

    def to_dense(self, box=None):
        """
        Extract a dense float32 subvolume.

        box: [(x0,y0,z0), (x1,y1,z1)] in global voxel coordinates.
             Defaults to bounding_box().

        Returns:
            ndarray indexed [z,y,x] (so that x is the fastest-varying axis in memory),
            with unstored voxels filled with the background value.
        """
        if box is None:
            box = self.bounding_box()
        box = np.asarray(box, dtype=np.int64)
        shape_zyx = tuple((box[1] - box[0])[::-1])
        dense = np.full(shape_zyx, self.background, dtype=np.float32)

        B = self.brick_size
        for brick_coord, (indices, values) in self._bricks.items():
            brick_start = np.array(brick_coord) * B
            brick_box = np.array([brick_start, brick_start + B])
            clipped = box_intersection(brick_box, box)
            if (clipped[1] <= clipped[0]).any():
                continue

            brick_vol = np.full(B**3, self.background, dtype=np.float32)
            brick_vol[indices] = values
            brick_vol = brick_vol.reshape((B,B,B))

            within_brick = (clipped - brick_box[0])[:, ::-1]
            within_dense = (clipped - box[0])[:, ::-1]
            dense[box_to_slicing(*within_dense)] = brick_vol[box_to_slicing(*within_brick)]
        return dense


def assemble_sparse_volume(manifest, bricks):
    """
    Build the SparseVolume for a set of decoded bricks.

    The caller is responsible for only passing bricks from a successful decode
    (which guarantees that no two bricks share a coordinate).

    Args:
        manifest: Manifest (supplies voxel_size, aabb_min, background_value_mm, brick_size)
        bricks: iterable of DecodedBrick

    Returns:
        SparseVolume
    """
    transform = LinearTransform(manifest.voxel_size, manifest.aabb_min)
    metadata = { "name": "distance",
                 "grid_class": "level_set",
                 "iso": manifest.iso,
                 "adaptivity": manifest.adaptivity,
                 "half_width_voxels": manifest.half_width_voxels,
                 "units": manifest.units }

    volume = SparseVolume( manifest.background_value_mm, transform, manifest.brick_size,
                           dims=manifest.dims, metadata=metadata )

    num_bricks = 0
    for brick in bricks:
        volume.insert_brick((brick.bx, brick.by, brick.bz), brick.values)
        num_bricks += 1

    num_voxels = num_bricks * manifest.brick_size**3
    logger.info(f"Assembled sparse volume from {num_bricks} bricks: "
                f"{volume.active_voxel_count} active voxels, "
                f"{num_voxels - volume.active_voxel_count} background voxels skipped")
    return volume
