import math

import numpy as np
import pytest

from slamkit.pnp_ransac import PnPCorrespondence, PnPRansac

FU, FV, UC, VC = 500.0, 500.0, 320.0, 240.0


def _rotation(angle):
    c, s = math.cos(angle), math.sin(angle)
    return np.array([[c, 0.0, s], [0.0, 1.0, 0.0], [-s, 0.0, c]])


def _scene(n=30, outliers=(), seed=3):
    rng = np.random.default_rng(seed)
    rotation = _rotation(0.1)
    translation = np.array([0.2, -0.1, 0.5])
    points = rng.uniform([-2, -2, 4], [2, 2, 8], size=(n, 3))
    pc = points @ rotation.T + translation
    image = np.column_stack([UC + FU * pc[:, 0] / pc[:, 2], VC + FV * pc[:, 1] / pc[:, 2]])
    for i in outliers:
        image[i] += np.array([80.0, -60.0])
    # Frame has more matches than correspondences; map them to even slots.
    corrs = [
        PnPCorrespondence(tuple(points[i]), tuple(image[i]), 1.0, 2 * i)
        for i in range(n)
    ]
    return corrs, 2 * n, rotation, translation


def test_find_recovers_pose_without_outliers():
    corrs, n_matches, rotation, translation = _scene()
    solver = PnPRansac(corrs, n_matches, FU, FV, UC, VC, seed=1)
    result = solver.find()
    assert result.pose is not None
    assert np.allclose(result.pose[:3, :3], rotation, atol=1e-5)
    assert np.allclose(result.pose[:3, 3], translation, atol=1e-5)
    assert np.allclose(result.pose[3], [0, 0, 0, 1])
    assert result.n_inliers == len(corrs)
    assert len(result.inliers) == n_matches
    assert all(result.inliers[c.index] for c in corrs)
    assert not any(result.inliers[i] for i in range(1, n_matches, 2))


def test_outliers_are_rejected():
    outliers = (0, 5, 11)
    corrs, n_matches, rotation, translation = _scene(outliers=outliers)
    solver = PnPRansac(corrs, n_matches, FU, FV, UC, VC, seed=7)
    result = solver.find()
    assert result.pose is not None
    assert np.allclose(result.pose[:3, :3], rotation, atol=1e-4)
    assert result.n_inliers == len(corrs) - len(outliers)
    for i in outliers:
        assert not result.inliers[corrs[i].index]
    assert sum(result.inliers) == result.n_inliers


def test_too_few_correspondences_gives_up():
    corrs, n_matches, _, _ = _scene(n=5)
    solver = PnPRansac(corrs, n_matches, FU, FV, UC, VC, seed=0)
    solver.set_ransac_parameters(0.99, 10, 300, 4, 0.5, 5.991)
    result = solver.iterate(5)
    assert result.pose is None
    assert result.no_more
    assert result.inliers == ()
    assert result.n_inliers == 0


def test_parameters_are_adjusted_to_matches():
    corrs, n_matches, _, _ = _scene(n=40)
    solver = PnPRansac(corrs, n_matches, FU, FV, UC, VC, seed=0)
    solver.set_ransac_parameters(0.99, 10, 300, 4, 0.5, 5.991)
    assert solver.min_inliers >= 10
    assert solver.min_inliers >= int(40 * 0.5)
    assert solver.epsilon >= solver.min_inliers / 40
    assert 1 <= solver.max_iterations <= 300


def test_min_inliers_equal_to_count_uses_single_iteration():
    corrs, n_matches, _, _ = _scene(n=12)
    solver = PnPRansac(corrs, n_matches, FU, FV, UC, VC, seed=0)
    solver.set_ransac_parameters(0.99, 12, 300, 4, 0.4, 5.991)
    assert solver.min_inliers == 12
    assert solver.max_iterations == 1


def test_same_seed_gives_same_result():
    corrs, n_matches, _, _ = _scene(outliers=(2, 3))
    first = PnPRansac(corrs, n_matches, FU, FV, UC, VC, seed=42).find()
    second = PnPRansac(corrs, n_matches, FU, FV, UC, VC, seed=42).find()
    assert np.array_equal(first.pose, second.pose)
    assert first.inliers == second.inliers


def test_iteration_counter_accumulates():
    corrs, n_matches, _, _ = _scene()
    solver = PnPRansac(corrs, n_matches, FU, FV, UC, VC, seed=5)
    solver.iterate(1)
    assert solver.iterations >= 1


def test_index_outside_matches_is_rejected():
    corrs, _, _, _ = _scene(n=6)
    with pytest.raises(ValueError):
        PnPRansac(corrs, 3, FU, FV, UC, VC)