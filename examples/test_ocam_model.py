#!/usr/bin/env python3
"""
Tests for the OCam camera model math.

Covers:
1. Projection / back-projection round trip
2. Analytic Jacobian against central finite differences
3. Unit norm of bearing vectors
4. Affine correction layout and its precomputed inverse
5. Documented degenerate inputs (on-axis points, singular affine correction)
"""

import io
import sys

import numpy as np
import pytest

from omnicam import OCamModel, distortion_to_affine_correction

from examples.conftest import POLYNOMIAL, fit_inverse_polynomial, make_model


def numerical_jacobian(model, point, step=1e-5):
  jacobian = np.zeros((2, 3))
  for axis in range(3):
    delta = np.zeros(3)
    delta[axis] = step
    forward, _ = model.project(point + delta)
    backward, _ = model.project(point - delta)
    jacobian[:, axis] = (forward - backward) / (2 * step)
  return jacobian


def test_round_trip_is_parallel(ocam_model, sample_points):
  for point in sample_points:
    keypoint, _ = ocam_model.project(point)
    bearing = ocam_model.back_project(keypoint)
    cosine = np.dot(bearing, point) / np.linalg.norm(point)
    assert cosine > 1.0 - 1e-6


def test_pixel_round_trip(ocam_model):
  pixels = np.array([[700.0, 500.0], [400.0, 300.0], [900.0, 700.0], [645.0, 470.0]])
  bearings = ocam_model.back_project_points(pixels)
  keypoints, _ = ocam_model.project_points(bearings)
  np.testing.assert_allclose(keypoints, pixels, atol=1e-2)


def test_jacobian_matches_finite_differences(ocam_model, sample_points):
  for point in sample_points:
    _, jacobian = ocam_model.project(point, want_jacobian=True)
    assert jacobian.shape == (2, 3)
    np.testing.assert_allclose(jacobian, numerical_jacobian(ocam_model, point),
                               rtol=1e-5, atol=1e-6)


def test_jacobian_with_skewed_affine_correction(sample_points):
  model = make_model(distortion=[0.95, 0.04, -0.03])
  for point in sample_points:
    _, jacobian = model.project(point, want_jacobian=True)
    np.testing.assert_allclose(jacobian, numerical_jacobian(model, point),
                               rtol=1e-5, atol=1e-6)


def test_project_without_jacobian_returns_none(ocam_model):
  keypoint, jacobian = ocam_model.project([0.5, 0.2, 1.0])
  assert keypoint.shape == (2,)
  assert jacobian is None


def test_batch_matches_single_point(ocam_model, sample_points):
  keypoints, jacobians = ocam_model.project_points(sample_points, want_jacobian=True)
  assert keypoints.shape == (len(sample_points), 2)
  assert jacobians.shape == (len(sample_points), 2, 3)
  for i, point in enumerate(sample_points):
    keypoint, jacobian = ocam_model.project(point, want_jacobian=True)
    np.testing.assert_allclose(keypoints[i], keypoint)
    np.testing.assert_allclose(jacobians[i], jacobian)


def test_back_project_returns_unit_vectors(ocam_model):
  rng = np.random.default_rng(7)
  pixels = rng.uniform([0.0, 0.0], [1280.0, 960.0], size=(200, 2))
  norms = np.linalg.norm(ocam_model.back_project_points(pixels), axis=1)
  np.testing.assert_allclose(norms, 1.0, atol=1e-9)


def test_principal_point_looks_along_optical_axis(ocam_model):
  bearing = ocam_model.back_project(ocam_model.principal_point)
  np.testing.assert_allclose(bearing, [0.0, 0.0, 1.0], atol=1e-12)


def test_affine_correction_element_mapping():
  # (d0, d1, d2) -> [[1, d2], [d1, d0]]
  affine = distortion_to_affine_correction([2.0, 3.0, 5.0])
  np.testing.assert_array_equal(affine, [[1.0, 5.0], [3.0, 2.0]])
  
  model = make_model(distortion=[2.0, 3.0, 5.0])
  np.testing.assert_array_equal(model.get_distortion_parameters(), [1.0, 5.0, 3.0, 2.0])


@pytest.mark.parametrize("distortion", [
  [1.0, 0.0, 0.0],
  [1.0005, 0.0003, -0.0002],
  [0.9, 0.1, -0.2],
  [2.0, 3.0, 5.0],
])
def test_affine_inverse_is_identity(distortion):
  model = make_model(distortion=distortion)
  np.testing.assert_allclose(model.affine_correction @ model.affine_correction_inverse,
                             np.eye(2), atol=1e-12)


def test_intrinsic_parameters(ocam_model):
  intrinsics = ocam_model.get_intrinsic_parameters()
  np.testing.assert_array_equal(intrinsics, POLYNOMIAL + [640.5, 480.25])


def test_on_axis_point_produces_nan():
  model = make_model()
  keypoint, jacobian = model.project([0.0, 0.0, 1.0], want_jacobian=True)
  assert np.all(np.isnan(keypoint))
  assert not np.all(np.isfinite(jacobian))


def test_singular_affine_correction_does_not_raise():
  # d0 = d1 = d2 = 0 gives [[1, 0], [0, 0]]
  model = make_model(distortion=[0.0, 0.0, 0.0])
  assert not np.all(np.isfinite(model.affine_correction_inverse))
  bearing = model.back_project([700.0, 500.0])
  assert np.any(np.isnan(bearing))


def test_zero_ray_back_projects_to_nan():
  # Polynomial with zero constant term: the principal point gives a zero vector
  model = OCamModel((10, 10), [0.0, 1.0, 0.0, 0.0, 0.0], (5.0, 5.0), (1.0, 0.0, 0.0),
                    fit_inverse_polynomial(POLYNOMIAL))
  assert np.all(np.isnan(model.back_project([5.0, 5.0])))


def test_model_is_immutable(ocam_model):
  with pytest.raises(ValueError):
    ocam_model.polynomial[0] = 1.0
  with pytest.raises(ValueError):
    ocam_model.affine_correction[0, 0] = 2.0
  with pytest.raises(AttributeError):
    ocam_model.principal_point = (0.0, 0.0)


def test_wrong_group_size_raises():
  with pytest.raises(ValueError):
    OCamModel((640, 480), [1.0, 2.0], (320.0, 240.0), (1.0, 0.0, 0.0), [0.0] * 12)
  with pytest.raises(ValueError):
    OCamModel((640, 480), [0.0] * 5, (320.0, 240.0), (1.0, 0.0, 0.0), [0.0] * 11)


def test_print_params(ocam_model):
  out = io.StringIO()
  ocam_model.print_params(out)
  text = out.getvalue()
  assert "Projection = Omni" in text
  assert "Image size = 1280 960" in text
  assert "Principal point = 640.5 480.25" in text
  assert "Affine correction inverse" in text
  assert text == str(ocam_model)


if __name__ == "__main__":
  sys.exit(pytest.main([__file__, "-v"]))
