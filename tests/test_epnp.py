import numpy as np
import pytest

from slamkit.epnp import EPnP, mat_to_quat, qr_solve, relative_error

FU, FV, UC, VC = 500.0, 510.0, 320.0, 240.0


def _rotation(axis, angle):
    axis = np.asarray(axis, dtype=float)
    axis = axis / np.linalg.norm(axis)
    k = np.array([[0, -axis[2], axis[1]], [axis[2], 0, -axis[0]], [-axis[1], axis[0], 0]])
    return np.eye(3) + np.sin(angle) * k + (1 - np.cos(angle)) * (k @ k)


def _scene(rotation, translation, n=20, seed=1):
    rng = np.random.default_rng(seed)
    cam = np.column_stack([rng.uniform(-1, 1, n), rng.uniform(-1, 1, n), rng.uniform(4, 8, n)])
    world = (cam - translation) @ rotation
    image = np.column_stack([UC + FU * cam[:, 0] / cam[:, 2], VC + FV * cam[:, 1] / cam[:, 2]])
    return world, image


@pytest.mark.parametrize(
    "axis,angle,translation",
    [
        ((0, 0, 1), 0.0, (0.0, 0.0, 0.0)),
        ((1, 2, 3), 0.4, (0.3, -0.2, 0.5)),
        ((0, 1, 0), -0.8, (-1.0, 0.5, 0.2)),
    ],
)
def test_compute_pose_recovers_true_pose(axis, angle, translation):
    r_true = _rotation(axis, angle)
    t_true = np.array(translation)
    world, image = _scene(r_true, t_true)
    rotation, t_est, error = EPnP(FU, FV, UC, VC).compute_pose(world, image)
    np.testing.assert_allclose(rotation, r_true, atol=1e-6)
    np.testing.assert_allclose(t_est, t_true, atol=1e-6)
    assert error < 1e-6


def test_compute_pose_returns_proper_rotation():
    world, image = _scene(_rotation((1, 1, 0), 0.3), np.array([0.1, 0.2, 0.3]), n=12, seed=5)
    rotation, _, _ = EPnP(FU, FV, UC, VC).compute_pose(world, image)
    np.testing.assert_allclose(rotation @ rotation.T, np.eye(3), atol=1e-9)
    assert np.linalg.det(rotation) == pytest.approx(1.0)


def test_reprojection_error_zero_for_true_pose_and_grows_when_shifted():
    r_true = _rotation((0, 0, 1), 0.2)
    t_true = np.array([0.0, 0.1, 0.0])
    world, image = _scene(r_true, t_true)
    solver = EPnP(FU, FV, UC, VC)
    assert solver.reprojection_error(r_true, t_true, world, image) < 1e-9
    shifted = solver.reprojection_error(r_true, t_true + np.array([0.5, 0.0, 0.0]), world, image)
    assert shifted > 1.0


def test_compute_pose_rejects_too_few_points():
    world, image = _scene(np.eye(3), np.zeros(3), n=3)
    with pytest.raises(ValueError):
        EPnP(FU, FV, UC, VC).compute_pose(world, image)


def test_compute_pose_rejects_mismatched_lengths():
    world, image = _scene(np.eye(3), np.zeros(3), n=6)
    with pytest.raises(ValueError):
        EPnP(FU, FV, UC, VC).compute_pose(world, image[:5])


def test_qr_solve_square_matches_direct_solve():
    rng = np.random.default_rng(3)
    a = rng.normal(size=(4, 4)) + 4 * np.eye(4)
    b = rng.normal(size=4)
    np.testing.assert_allclose(qr_solve(a, b), np.linalg.solve(a, b), atol=1e-10)


def test_qr_solve_overdetermined_matches_least_squares():
    rng = np.random.default_rng(4)
    a = rng.normal(size=(6, 4))
    b = rng.normal(size=6)
    expected = np.linalg.lstsq(a, b, rcond=None)[0]
    np.testing.assert_allclose(qr_solve(a, b), expected, atol=1e-10)


def test_qr_solve_does_not_modify_inputs():
    a = np.array([[2.0, 1.0], [1.0, 3.0], [0.0, 1.0]])
    b = np.array([1.0, 2.0, 3.0])
    a_copy, b_copy = a.copy(), b.copy()
    qr_solve(a, b)
    np.testing.assert_array_equal(a, a_copy)
    np.testing.assert_array_equal(b, b_copy)


def test_qr_solve_singular_raises():
    a = np.array([[1.0, 0.0], [2.0, 0.0], [3.0, 0.0]])
    with pytest.raises(np.linalg.LinAlgError):
        qr_solve(a, np.ones(3))


def test_qr_solve_shape_mismatch_raises():
    with pytest.raises(ValueError):
        qr_solve(np.eye(3), np.ones(2))


def test_mat_to_quat_identity():
    np.testing.assert_allclose(mat_to_quat(np.eye(3)), [0.0, 0.0, 0.0, 1.0])


@pytest.mark.parametrize(
    "axis,angle",
    [((1, 0, 0), np.pi), ((0, 1, 0), np.pi), ((0, 0, 1), np.pi), ((1, 2, 3), 0.7), ((1, 1, 0), 2.9)],
)
def test_mat_to_quat_is_unit_length(axis, angle):
    q = mat_to_quat(_rotation(axis, angle))
    assert np.linalg.norm(q) == pytest.approx(1.0)


def test_mat_to_quat_rejects_bad_shape():
    with pytest.raises(ValueError):
        mat_to_quat(np.eye(4))


def test_relative_error_zero_for_identical_pose():
    r = _rotation((1, 2, 3), 0.5)
    t = np.array([1.0, 2.0, 3.0])
    rot_err, transl_err = relative_error(r, t, r, t)
    assert rot_err == pytest.approx(0.0, abs=1e-12)
    assert transl_err == pytest.approx(0.0, abs=1e-12)


def test_relative_error_translation_scaled():
    r = np.eye(3)
    t = np.array([0.0, 3.0, 4.0])
    _, transl_err = relative_error(r, t, r, 2 * t)
    assert transl_err == pytest.approx(1.0)


def test_relative_error_rotation_grows_with_angle():
    t = np.array([1.0, 0.0, 0.0])
    small, _ = relative_error(np.eye(3), t, _rotation((0, 0, 1), 0.1), t)
    large, _ = relative_error(np.eye(3), t, _rotation((0, 0, 1), 0.5), t)
    assert 0.0 < small < large