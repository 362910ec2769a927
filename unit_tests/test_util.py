import logging

import numpy as np

from SDFBrickServices.util import Timer, ceil_div, box_to_slicing, box_intersection, ndrange


def test_ceil_div():
    assert ceil_div(64, 64) == 1
    assert ceil_div(65, 64) == 2
    assert ceil_div(1, 32) == 1
    assert ceil_div(0, 32) == 0


def test_box_to_slicing():
    assert box_to_slicing([1,2,3], [4,5,6]) == np.s_[1:4, 2:5, 3:6]


def test_box_intersection():
    box_A = [(0,0,0), (10,10,10)]
    box_B = [(5,-5,8), (15,5,20)]
    assert box_intersection(box_A, box_B).tolist() == [[5,0,8], [10,5,10]]

    # No overlap: non-positive shape
    box_C = [(20,20,20), (30,30,30)]
    intersection = box_intersection(box_A, box_C)
    assert (intersection[1] - intersection[0] <= 0).all()


def test_ndrange():
    assert list(ndrange((2,2))) == [(0,0), (0,1), (1,0), (1,1)]
    assert list(ndrange((1,2,3), (10,20,30), step=(5,10,15))) == [(1, 2, 3), (1, 2, 18), (1, 12, 3), (1, 12, 18),
                                                                   (6, 2, 3), (6, 2, 18), (6, 12, 3), (6, 12, 18)]


def test_timer(caplog):
    with caplog.at_level(logging.INFO):
        with Timer("Doing something", logger) as timer:
            pass
    assert timer.seconds >= 0.0
    assert abs(timer.timedelta.total_seconds() - timer.seconds) < 1e-5
    assert "Doing something..." in caplog.text
    assert "Doing something took" in caplog.text


logger = logging.getLogger("unit_tests.test_util")
