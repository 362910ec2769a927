import unittest

import numpy as np

from SDFBrickServices.io_util.manifest import validate_manifest
from SDFBrickServices.io_util.bricks_data import DecodedBrick
from SDFBrickServices.volume.sparse_volume import LinearTransform, SparseVolume, assemble_sparse_volume
from SDFBrickServices.debug_generate import debug_manifest_document

B = 32
BACKGROUND = 1000.0


def make_manifest(**overrides):
    document = debug_manifest_document(64, 0.5, B, 'f32')
    document.update(overrides)
    result = validate_manifest(document)
    assert result.ok, result.errors
    return result.manifest


class TestLinearTransform(unittest.TestCase):

    def test_index_to_world(self):
        t = LinearTransform(0.5, (10.0, -2.0, 0.0))
        assert (t.index_to_world((0,0,0)) == [10.0, -2.0, 0.0]).all()
        assert (t.index_to_world((2,4,6)) == [11.0, 0.0, 3.0]).all()

        points = t.index_to_world([[0,0,0], [1,1,1]])
        assert points.shape == (2,3)
        assert (points[1] == [10.5, -1.5, 0.5]).all()

    def test_world_to_index(self):
        t = LinearTransform(0.5, (10.0, -2.0, 0.0))
        assert (t.world_to_index((11.0, 0.0, 3.0)) == [2, 4, 6]).all()
        assert (t.world_to_index(t.index_to_world((7,8,9))) == [7,8,9]).all()

    def test_matrix(self):
        t = LinearTransform(2.0, (1.0, 2.0, 3.0))
        m = t.matrix()
        assert (m @ [1, 1, 1, 1] == [3.0, 4.0, 5.0, 1.0]).all()


class TestSparseVolume(unittest.TestCase):

    def setUp(self):
        self.volume = SparseVolume(BACKGROUND, LinearTransform(1.0), B)

    def test_empty(self):
        assert self.volume.active_voxel_count == 0
        assert self.volume.brick_coords() == []
        assert self.volume.get_value((0,0,0)) == BACKGROUND
        assert self.volume.active_coords().shape == (0,3)
        assert self.volume.active_values().shape == (0,)

    def test_insert_and_query(self):
        values = np.full(B**3, BACKGROUND, dtype=np.float32)
        values[3 + B*(4 + B*5)] = -1.5
        values[B**3 - 1] = 2.0
        assert self.volume.insert_brick((1,0,2), values) == 2

        assert self.volume.active_voxel_count == 2
        assert self.volume.brick_coords() == [(1,0,2)]

        # global = brick * B + local
        assert self.volume.get_value((B+3, 4, 2*B+5)) == -1.5
        assert self.volume.get_value((2*B-1, B-1, 3*B-1)) == 2.0
        assert self.volume.is_active((B+3, 4, 2*B+5))

        # Background within the same brick, and in a missing brick
        assert self.volume.get_value((B, 0, 2*B)) == BACKGROUND
        assert not self.volume.is_active((B, 0, 2*B))
        assert self.volume.get_value((0, 0, 0)) == BACKGROUND

        coords = self.volume.active_coords()
        assert coords.tolist() == [[B+3, 4, 2*B+5], [2*B-1, B-1, 3*B-1]]
        assert self.volume.active_values().tolist() == [-1.5, 2.0]

    def test_all_background_brick(self):
        values = np.full(B**3, BACKGROUND, dtype=np.float32)
        assert self.volume.insert_brick((0,0,0), values) == 0
        assert self.volume.active_voxel_count == 0
        assert self.volume.brick_coords() == []
        for coord in [(0,0,0), (5,6,7), (B-1,B-1,B-1)]:
            assert self.volume.get_value(coord) == BACKGROUND

    def test_exact_equality(self):
        # Values merely close to the background are still stored
        values = np.full(B**3, BACKGROUND, dtype=np.float32)
        values[0] = np.nextafter(np.float32(BACKGROUND), np.float32(0))
        values[1] = -BACKGROUND
        assert self.volume.insert_brick((0,0,0), values) == 2

    def test_duplicate_brick(self):
        values = np.zeros(B**3, dtype=np.float32)
        self.volume.insert_brick((0,0,0), values)
        with self.assertRaises(ValueError):
            self.volume.insert_brick((0,0,0), values)

    def test_to_dense(self):
        volume = SparseVolume(BACKGROUND, LinearTransform(1.0), B, dims=(64, 64, 64))
        values = np.full(B**3, BACKGROUND, dtype=np.float32)
        values[0] = 1.0              # local (0,0,0)
        values[1 + B*(2 + B*3)] = 2.0  # local (1,2,3)
        volume.insert_brick((1,0,0), values)

        dense = volume.to_dense()
        assert dense.shape == (64, 64, 64)
        assert dense.dtype == np.float32

        # Indexed [z,y,x]
        assert dense[0, 0, B] == 1.0
        assert dense[3, 2, B+1] == 2.0
        assert (dense != BACKGROUND).sum() == 2

        # Partial box, spanning two bricks
        box = [(B-2, 0, 0), (B+2, 4, 4)]
        sub = volume.to_dense(box)
        assert sub.shape == (4, 4, 4)
        assert sub[0, 0, 2] == 1.0
        assert sub[3, 2, 3] == 2.0
        assert (sub != BACKGROUND).sum() == 2

    def test_to_dense_matches_get_value(self):
        rng = np.random.RandomState(0)
        values = np.where(rng.uniform(size=B**3) < 0.1, rng.uniform(-3, 3, size=B**3), BACKGROUND).astype(np.float32)
        self.volume.insert_brick((0,1,0), values)

        dense = self.volume.to_dense([(0, B, 0), (B, 2*B, B)])
        for x, y, z in rng.randint(0, B, size=(100, 3)):
            assert dense[z, y, x] == self.volume.get_value((x, B+y, z))


class TestAssemble(unittest.TestCase):

    def test_assemble(self):
        manifest = make_manifest(aabb_min=[1.0, 2.0, 3.0])
        rng = np.random.RandomState(1)

        background_brick = np.full(B**3, BACKGROUND, dtype=np.float32)
        mixed_brick = background_brick.copy()
        mixed_brick[rng.choice(B**3, 500, replace=False)] = rng.uniform(-1, 1, size=500)

        bricks = [ DecodedBrick(0, 0, 0, background_brick),
                   DecodedBrick(1, 1, 0, mixed_brick) ]

        volume = assemble_sparse_volume(manifest, bricks)
        assert volume.background == np.float32(BACKGROUND)
        assert volume.brick_size == B
        assert volume.active_voxel_count == 500
        assert volume.brick_coords() == [(1,1,0)]

        # Everything in the all-background brick (and in the absent bricks) reads as background
        assert volume.get_value((0,0,0)) == BACKGROUND
        assert volume.get_value((B-1,B-1,B-1)) == BACKGROUND
        assert volume.get_value((0,0,B)) == BACKGROUND

        # Transform: index origin maps to aabb_min
        assert (volume.transform.index_to_world((0,0,0)) == [1.0, 2.0, 3.0]).all()
        assert (volume.transform.index_to_world((2,2,2)) == [2.0, 3.0, 4.0]).all()

        assert volume.metadata["name"] == "distance"
        assert volume.metadata["grid_class"] == "level_set"
        assert volume.metadata["iso"] == 0.0

        # Materialized voxels are exactly the non-background ones
        dense = volume.to_dense()
        brick_region = dense[0:B, B:2*B, B:2*B].reshape(-1)
        assert (brick_region == mixed_brick).all()
        assert (dense != BACKGROUND).sum() == 500

    def test_assemble_nothing(self):
        volume = assemble_sparse_volume(make_manifest(), [])
        assert volume.active_voxel_count == 0
        assert volume.get_value((10, 20, 30)) == BACKGROUND


if __name__ == "__main__":
    unittest.main()
