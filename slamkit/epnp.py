"""Camera pose from 3D-2D correspondences with the EPnP algorithm."""

from __future__ import annotations

import math

import numpy as np

_PAIRS = ((0, 1), (0, 2), (0, 3), (1, 2), (1, 3), (2, 3))
_GAUSS_NEWTON_ITERATIONS = 5
# Null-space vectors of M^T M, smallest singular value first.
_NULL_SPACE_ROWS = [11, 10, 9, 8]


def qr_solve(a, b):
    """Solve ``a @ x = b`` in the least-squares sense by Householder QR.

    Raises ``numpy.linalg.LinAlgError`` when a column of ``a`` vanishes.
    """
    a = np.array(a, dtype=float)
    b = np.array(b, dtype=float).reshape(-1)
    if a.ndim != 2:
        raise ValueError("a must be a two-dimensional matrix")
    nr, nc = a.shape
    if b.shape[0] != nr:
        raise ValueError("b must have one entry per row of a")
    if nr < nc:
        raise ValueError("a must have at least as many rows as columns")

    a1 = np.empty(nc)
    a2 = np.empty(nc)
    for k in range(nc):
        col = a[k:, k]
        eta = np.max(np.abs(col))
        if eta == 0:
            raise np.linalg.LinAlgError("matrix is singular")
        col *= 1.0 / eta
        sigma = math.sqrt(float(col @ col))
        if col[0] < 0:
            sigma = -sigma
        col[0] += sigma
        a1[k] = sigma * col[0]
        a2[k] = -eta * sigma
        if k + 1 < nc:
            tau = (col @ a[k:, k + 1:]) / a1[k]
            a[k:, k + 1:] -= np.outer(col, tau)

    # b <- Q^T b
    for j in range(nc):
        col = a[j:, j]
        tau = (col @ b[j:]) / a1[j]
        b[j:] -= tau * col

    # x = R^-1 b
    x = np.empty(nc)
    for i in reversed(range(nc)):
        x[i] = (b[i] - a[i, i + 1:] @ x[i + 1:]) / a2[i]
    return x


def mat_to_quat(rotation):
    """Return the four quaternion components of a 3x3 rotation matrix."""
    r = np.asarray(rotation, dtype=float)
    if r.shape != (3, 3):
        raise ValueError("rotation must be a 3x3 matrix")
    tr = r[0, 0] + r[1, 1] + r[2, 2]
    if tr > 0.0:
        q = np.array([r[1, 2] - r[2, 1], r[2, 0] - r[0, 2], r[0, 1] - r[1, 0], tr + 1.0])
        n4 = q[3]
    elif r[0, 0] > r[1, 1] and r[0, 0] > r[2, 2]:
        q = np.array([
            1.0 + r[0, 0] - r[1, 1] - r[2, 2],
            r[1, 0] + r[0, 1],
            r[2, 0] + r[0, 2],
            r[1, 2] - r[2, 1],
        ])
        n4 = q[0]
    elif r[1, 1] > r[2, 2]:
        q = np.array([
            r[1, 0] + r[0, 1],
            1.0 + r[1, 1] - r[0, 0] - r[2, 2],
            r[2, 1] + r[1, 2],
            r[2, 0] - r[0, 2],
        ])
        n4 = q[1]
    else:
        q = np.array([
            r[2, 0] + r[0, 2],
            r[2, 1] + r[1, 2],
            1.0 + r[2, 2] - r[0, 0] - r[1, 1],
            r[0, 1] - r[1, 0],
        ])
        n4 = q[2]
    return q * (0.5 / math.sqrt(n4))


def relative_error(rotation_true, translation_true, rotation_est, translation_est):
    """Return ``(rotation_error, translation_error)`` relative to the true pose."""
    q_true = mat_to_quat(rotation_true)
    q_est = mat_to_quat(rotation_est)
    norm_q = np.linalg.norm(q_true)
    rot_err = min(
        np.linalg.norm(q_true - q_est) / norm_q,
        np.linalg.norm(q_true + q_est) / norm_q,
    )
    t_true = np.asarray(translation_true, dtype=float).reshape(3)
    t_est = np.asarray(translation_est, dtype=float).reshape(3)
    transl_err = np.linalg.norm(t_true - t_est) / np.linalg.norm(t_true)
    return float(rot_err), float(transl_err)


def _compute_l_6x10(ut):
    v = ut[_NULL_SPACE_ROWS].reshape(4, 4, 3)
    dv = np.stack([v[:, a] - v[:, b] for a, b in _PAIRS], axis=1)  # (4, 6, 3)

    def dot(i, k):
        return np.sum(dv[i] * dv[k], axis=1)

    return np.column_stack([
        dot(0, 0), 2.0 * dot(0, 1), dot(1, 1),
        2.0 * dot(0, 2), 2.0 * dot(1, 2), dot(2, 2),
        2.0 * dot(0, 3), 2.0 * dot(1, 3), 2.0 * dot(2, 3), dot(3, 3),
    ])


def _compute_rho(cws):
    return np.array([np.sum((cws[a] - cws[b]) ** 2) for a, b in _PAIRS])


def _lstsq(matrix, rhs):
    return np.linalg.lstsq(matrix, rhs, rcond=None)[0]


def _betas_approx_1(l_6x10, rho):
    b4 = _lstsq(l_6x10[:, [0, 1, 3, 6]], rho)
    if b4[0] < 0:
        beta0 = np.sqrt(-b4[0])
        return np.array([beta0, -b4[1] / beta0, -b4[2] / beta0, -b4[3] / beta0])
    beta0 = np.sqrt(b4[0])
    return np.array([beta0, b4[1] / beta0, b4[2] / beta0, b4[3] / beta0])


def _first_two_betas(b):
    if b[0] < 0:
        beta0 = np.sqrt(-b[0])
        beta1 = np.sqrt(-b[2]) if b[2] < 0 else 0.0
    else:
        beta0 = np.sqrt(b[0])
        beta1 = np.sqrt(b[2]) if b[2] > 0 else 0.0
    if b[1] < 0:
        beta0 = -beta0
    return beta0, beta1


def _betas_approx_2(l_6x10, rho):
    b3 = _lstsq(l_6x10[:, :3], rho)
    beta0, beta1 = _first_two_betas(b3)
    return np.array([beta0, beta1, 0.0, 0.0])


def _betas_approx_3(l_6x10, rho):
    b5 = _lstsq(l_6x10[:, :5], rho)
    beta0, beta1 = _first_two_betas(b5)
    return np.array([beta0, beta1, b5[3] / beta0, 0.0])


def _gauss_newton_system(l, rho, betas):
    b0, b1, b2, b3 = betas
    a = np.column_stack([
        2 * l[:, 0] * b0 + l[:, 1] * b1 + l[:, 3] * b2 + l[:, 6] * b3,
        l[:, 1] * b0 + 2 * l[:, 2] * b1 + l[:, 4] * b2 + l[:, 7] * b3,
        l[:, 3] * b0 + l[:, 4] * b1 + 2 * l[:, 5] * b2 + l[:, 8] * b3,
        l[:, 6] * b0 + l[:, 7] * b1 + l[:, 8] * b2 + 2 * l[:, 9] * b3,
    ])
    products = np.array([
        b0 * b0, b0 * b1, b1 * b1, b0 * b2, b1 * b2,
        b2 * b2, b0 * b3, b1 * b3, b2 * b3, b3 * b3,
    ])
    return a, rho - l @ products


def _gauss_newton(l_6x10, rho, betas):
    betas = np.array(betas, dtype=float)
    for _ in range(_GAUSS_NEWTON_ITERATIONS):
        a, b = _gauss_newton_system(l_6x10, rho, betas)
        try:
            betas += qr_solve(a, b)
        except np.linalg.LinAlgError:
            break
    return betas


class EPnP:
    """Pose estimator for a pinhole camera with the given intrinsics."""

    def __init__(self, fu, fv, uc, vc):
        self.fu = float(fu)
        self.fv = float(fv)
        self.uc = float(uc)
        self.vc = float(vc)

    @staticmethod
    def _check(points_world, points_image):
        pws = np.asarray(points_world, dtype=float)
        us = np.asarray(points_image, dtype=float)
        if pws.ndim != 2 or pws.shape[1] != 3:
            raise ValueError("points_world must have shape (n, 3)")
        if us.ndim != 2 or us.shape[1] != 2:
            raise ValueError("points_image must have shape (n, 2)")
        if pws.shape[0] != us.shape[0]:
            raise ValueError("points_world and points_image differ in length")
        return pws, us

    def compute_pose(self, points_world, points_image):
        """Estimate the world-to-camera pose.

        Returns ``(rotation, translation, mean_reprojection_error)``.
        """
        pws, us = self._check(points_world, points_image)
        if pws.shape[0] < 4:
            raise ValueError("at least 4 correspondences are required")

        with np.errstate(all="ignore"):
            cws = self._control_points(pws)
            alphas = self._barycentric(pws, cws)
            m = self._build_m(alphas, us)
            u, _, _ = np.linalg.svd(m.T @ m)
            ut = u.T

            l_6x10 = _compute_l_6x10(ut)
            rho = _compute_rho(cws)

            best = None
            for approx in (_betas_approx_1, _betas_approx_2, _betas_approx_3):
                betas = _gauss_newton(l_6x10, rho, approx(l_6x10, rho))
                rotation, translation = self._r_and_t(ut, betas, alphas, pws)
                error = self.reprojection_error(rotation, translation, pws, us)
                if best is None or error < best[2]:
                    best = (rotation, translation, error)
        return best

    def reprojection_error(self, rotation, translation, points_world, points_image):
        """Mean pixel distance between observed and reprojected points."""
        pws, us = self._check(points_world, points_image)
        r = np.asarray(rotation, dtype=float)
        t = np.asarray(translation, dtype=float).reshape(3)
        pc = pws @ r.T + t
        inv_z = 1.0 / pc[:, 2]
        ue = self.uc + self.fu * pc[:, 0] * inv_z
        ve = self.vc + self.fv * pc[:, 1] * inv_z
        distances = np.sqrt((us[:, 0] - ue) ** 2 + (us[:, 1] - ve) ** 2)
        return float(np.mean(distances))

    @staticmethod
    def _control_points(pws):
        n = pws.shape[0]
        c0 = pws.mean(axis=0)
        centred = pws - c0
        u, s, _ = np.linalg.svd(centred.T @ centred)
        others = [c0 + math.sqrt(s[i] / n) * u[:, i] for i in range(3)]
        return np.vstack([c0, *others])

    @staticmethod
    def _barycentric(pws, cws):
        cc = (cws[1:] - cws[0]).T
        cc_inv = np.linalg.pinv(cc)
        rest = (pws - cws[0]) @ cc_inv.T
        first = 1.0 - rest.sum(axis=1)
        return np.column_stack([first, rest])

    def _build_m(self, alphas, us):
        n = alphas.shape[0]
        m = np.zeros((2 * n, 12))
        u = us[:, 0:1]
        v = us[:, 1:2]
        m[0::2, 0::3] = alphas * self.fu
        m[0::2, 2::3] = alphas * (self.uc - u)
        m[1::2, 1::3] = alphas * self.fv
        m[1::2, 2::3] = alphas * (self.vc - v)
        return m

    @staticmethod
    def _r_and_t(ut, betas, alphas, pws):
        null_vectors = ut[_NULL_SPACE_ROWS].reshape(4, 4, 3)
        ccs = np.tensordot(betas, null_vectors, axes=1)
        pcs = alphas @ ccs
        if pcs[0, 2] < 0.0:
            pcs = -pcs

        pc0 = pcs.mean(axis=0)
        pw0 = pws.mean(axis=0)
        abt = (pcs - pc0).T @ (pws - pw0)
        u, _, vt = np.linalg.svd(abt)
        rotation = u @ vt
        if np.linalg.det(rotation) < 0:
            rotation[2] = -rotation[2]
        translation = pc0 - rotation @ pw0
        return rotation, translation