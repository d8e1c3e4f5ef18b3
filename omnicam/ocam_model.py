"""
MIT License

Copyright (c) 2025 Pan Yu

Permission is hereby granted, free of charge, to any person obtaining a copy
of this software and associated documentation files (the "Software"), to deal
in the Software without restriction, including without limitation the rights
to use, copy, modify, merge, publish, distribute, sublicense, and/or sell
copies of the Software, and to permit persons to whom the Software is
furnished to do so, subject to the following conditions:

The above copyright notice and this permission notice shall be included in all
copies or substantial portions of the Software.

THE SOFTWARE IS PROVIDED "AS IS", WITHOUT WARRANTY OF ANY KIND, EXPRESS OR
IMPLIED, INCLUDING BUT NOT LIMITED TO THE WARRANTIES OF MERCHANTABILITY,
FITNESS FOR A PARTICULAR PURPOSE AND NONINFRINGEMENT. IN NO EVENT SHALL THE
AUTHORS OR COPYRIGHT HOLDERS BE LIABLE FOR ANY CLAIM, DAMAGES OR OTHER
LIABILITY, WHETHER IN AN ACTION OF CONTRACT, TORT OR OTHERWISE, ARISING FROM,
OUT OF OR IN CONNECTION WITH THE SOFTWARE OR THE USE OR OTHER DEALINGS IN THE
SOFTWARE.

Author: Pan Yu
"""

import sys
import numpy as np
from typing import Optional, Sequence, TextIO, Tuple

POLYNOMIAL_SIZE = 5
INVERSE_POLYNOMIAL_ORDER = 12


def distortion_to_affine_correction(distortion: Sequence[float]) -> np.ndarray:
  """
  Build the 2x2 affine correction matrix from the three distortion values.
  
  The calibration toolbox writes (d0, d1, d2) in Matlab row-major order, so the
  matrix is assembled transposed to that reading order: [[1, d2], [d1, d0]].
  
  Parameters:
  - distortion: sequence of 3 values (d0, d1, d2)
  
  Returns:
  2x2 float64 numpy array.
  """
  d0, d1, d2 = (float(v) for v in distortion)
  return np.array([
    [1.0, d2],
    [d1, d0]
  ], dtype=np.float64)


def _invert_2x2(matrix: np.ndarray) -> np.ndarray:
  """Closed-form 2x2 inverse; a singular matrix yields inf/nan entries instead of raising."""
  a, b = matrix[0]
  c, d = matrix[1]
  with np.errstate(divide='ignore', invalid='ignore'):
    inv_det = np.float64(1.0) / np.float64(a * d - b * c)
    return np.array([
      [d * inv_det, -b * inv_det],
      [-c * inv_det, a * inv_det]
    ], dtype=np.float64)


def _frozen_vector(values, size: int, name: str, dtype=np.float64) -> np.ndarray:
  array = np.array(values, dtype=dtype).reshape(-1)
  if array.size != size:
    raise ValueError(f"{name} must have {size} elements, got {array.size}")
  array.setflags(write=False)
  return array


class OCamModel:
  """
  Omnidirectional (OCam) fisheye camera model.
  
  Maps 3D points in the camera frame to pixel coordinates through a polynomial
  in the incidence angle followed by an affine sensor correction, and maps pixels
  back to unit bearing vectors through the forward radial polynomial.
  
  The object is immutable after construction: every stored array is read-only
  and there are no setters, so one instance can be shared between threads.
  """
  
  def __init__(self, image_size: Sequence[int], polynomial: Sequence[float],
               principal_point: Sequence[float], distortion: Sequence[float],
               inverse_polynomial: Sequence[float]):
    """
    Initialize the camera model.
    
    Parameters:
    - image_size: (width, height) in pixels, descriptive only
    - polynomial: 5 coefficients of the back-projection polynomial rho -> z
    - principal_point: (x, y) pixel position of the optical axis
    - distortion: 3 values (d0, d1, d2) defining the affine correction
    - inverse_polynomial: 12 coefficients of the projection polynomial theta -> rho
    
    Raises:
    ValueError if any group has the wrong number of elements.
    """
    self._image_size = _frozen_vector(image_size, 2, "image_size", dtype=np.int64)
    self._polynomial = _frozen_vector(polynomial, POLYNOMIAL_SIZE, "polynomial")
    self._principal_point = _frozen_vector(principal_point, 2, "principal_point")
    self._distortion = _frozen_vector(distortion, 3, "distortion")
    self._inverse_polynomial = _frozen_vector(inverse_polynomial, INVERSE_POLYNOMIAL_ORDER,
                                              "inverse_polynomial")
    
    self._affine_correction = distortion_to_affine_correction(self._distortion)
    self._affine_correction.setflags(write=False)
    self._affine_correction_inverse = _invert_2x2(self._affine_correction)
    self._affine_correction_inverse.setflags(write=False)
    
    # Weights i * c_i for the derivative of the inverse polynomial, i = 1..11
    self._inverse_polynomial_derivative = (
      np.arange(1, INVERSE_POLYNOMIAL_ORDER) * self._inverse_polynomial[1:])
  
  @property
  def image_size(self) -> Tuple[int, int]:
    return (int(self._image_size[0]), int(self._image_size[1]))
  
  @property
  def polynomial(self) -> np.ndarray:
    return self._polynomial
  
  @property
  def inverse_polynomial(self) -> np.ndarray:
    return self._inverse_polynomial
  
  @property
  def principal_point(self) -> np.ndarray:
    return self._principal_point
  
  @property
  def distortion(self) -> np.ndarray:
    return self._distortion
  
  @property
  def affine_correction(self) -> np.ndarray:
    return self._affine_correction
  
  @property
  def affine_correction_inverse(self) -> np.ndarray:
    return self._affine_correction_inverse
  
  def back_project_points(self, keypoints: np.ndarray) -> np.ndarray:
    """
    Vectorized back-projection of pixel coordinates to unit bearing vectors.
    
    Parameters:
    - keypoints: array of shape (N, 2) with pixel coordinates
    
    Returns:
    - array of shape (N, 3) with unit bearing vectors. A pixel whose raw ray is the
      zero vector produces NaN.
    """
    keypoints = np.asarray(keypoints, dtype=np.float64).reshape(-1, 2)
    
    # Undo principal point offset and affine correction
    rectified = (keypoints - self._principal_point) @ self._affine_correction_inverse.T
    rho = np.linalg.norm(rectified, axis=1)
    
    # Horner's method, highest order coefficient first
    poly = self._polynomial
    z = np.full_like(rho, poly[4])
    z = poly[3] + z * rho
    z = poly[2] + z * rho
    z = poly[1] + z * rho
    z = poly[0] + z * rho
    z = -z
    
    bearings = np.column_stack([rectified, z])
    with np.errstate(divide='ignore', invalid='ignore'):
      norms = np.linalg.norm(bearings, axis=1)
      return bearings / norms[:, np.newaxis]
  
  def back_project(self, keypoint: Sequence[float]) -> np.ndarray:
    """
    Back-project one pixel to a unit bearing vector.
    
    Parameters:
    - keypoint: (x, y) pixel coordinate
    
    Returns:
    3-element unit vector.
    """
    return self.back_project_points(np.asarray(keypoint, dtype=np.float64).reshape(1, 2))[0]
  
  def project_points(self, points: np.ndarray,
                     want_jacobian: bool = False) -> Tuple[np.ndarray, Optional[np.ndarray]]:
    """
    Vectorized projection of 3D points to pixel coordinates.
    
    Parameters:
    - points: array of shape (N, 3) in the camera frame
    - want_jacobian: if True, also return d(keypoint)/d(point) for every point
    
    Returns:
    - keypoints: array of shape (N, 2)
    - jacobians: array of shape (N, 2, 3), or None when not requested
    
    Points on the optical axis (x = y = 0) produce NaN/Inf.
    """
    points = np.asarray(points, dtype=np.float64).reshape(-1, 3)
    
    x = points[:, 0]
    y = points[:, 1]
    z = -points[:, 2]
    
    with np.errstate(divide='ignore', invalid='ignore'):
      xy_norm2 = x * x + y * y
      xy_norm = np.sqrt(xy_norm2)
      theta = np.arctan(z / xy_norm)
      
      theta_powers = np.empty((points.shape[0], INVERSE_POLYNOMIAL_ORDER), dtype=np.float64)
      theta_powers[:, 0] = 1.0
      for i in range(1, INVERSE_POLYNOMIAL_ORDER):
        theta_powers[:, i] = theta_powers[:, i - 1] * theta
      
      rho = theta_powers @ self._inverse_polynomial
      
      raw_uv = np.column_stack([x / xy_norm * rho, y / xy_norm * rho])
      keypoints = raw_uv @ self._affine_correction.T + self._principal_point
      
      if not want_jacobian:
        return keypoints, None
      
      # rho w.r.t. theta
      drho_dtheta = theta_powers[:, :-1] @ self._inverse_polynomial_derivative
      
      # theta w.r.t. x, y, z (z here is the flipped axis)
      xyz_norm_sqr = xy_norm2 + z * z
      dtheta_dx = -x * z / (xy_norm * xyz_norm_sqr)
      dtheta_dy = -y * z / (xy_norm * xyz_norm_sqr)
      dtheta_dz = xy_norm / xyz_norm_sqr
      
      drho_dx = drho_dtheta * dtheta_dx
      drho_dy = drho_dtheta * dtheta_dy
      drho_dz = drho_dtheta * dtheta_dz
      
      # raw uv w.r.t. x, y, z
      duraw_dx = (xy_norm - x * x / xy_norm) / xy_norm2 * rho + drho_dx * x / xy_norm
      duraw_dy = (-x * y / xy_norm) / xy_norm2 * rho + drho_dy * x / xy_norm
      duraw_dz = drho_dz * x / xy_norm
      dvraw_dx = (-x * y / xy_norm) / xy_norm2 * rho + drho_dx * y / xy_norm
      dvraw_dy = (xy_norm - y * y / xy_norm) / xy_norm2 * rho + drho_dy * y / xy_norm
      dvraw_dz = drho_dz * y / xy_norm
      
      # Negated z column undoes the axis flip
      raw_jacobians = np.stack([
        np.column_stack([duraw_dx, duraw_dy, -duraw_dz]),
        np.column_stack([dvraw_dx, dvraw_dy, -dvraw_dz])
      ], axis=1)
      
      jacobians = np.einsum('ij,njk->nik', self._affine_correction, raw_jacobians)
    
    return keypoints, jacobians
  
  def project(self, point_3d: Sequence[float],
              want_jacobian: bool = False) -> Tuple[np.ndarray, Optional[np.ndarray]]:
    """
    Project one 3D point to a pixel coordinate.
    
    Parameters:
    - point_3d: (x, y, z) in the camera frame
    - want_jacobian: if True, also return the 2x3 Jacobian w.r.t. (x, y, z)
    
    Returns:
    Tuple (keypoint, jacobian) where jacobian is None unless requested.
    """
    keypoints, jacobians = self.project_points(
      np.asarray(point_3d, dtype=np.float64).reshape(1, 3), want_jacobian)
    return keypoints[0], (jacobians[0] if jacobians is not None else None)
  
  def get_intrinsic_parameters(self) -> np.ndarray:
    """Polynomial coefficients followed by the principal point (7 values)."""
    return np.concatenate([self._polynomial, self._principal_point])
  
  def get_distortion_parameters(self) -> np.ndarray:
    """Affine correction entries in the order (0,0), (0,1), (1,0), (1,1)."""
    return self._affine_correction.reshape(-1).copy()
  
  def get_image_size(self) -> Tuple[int, int]:
    return self.image_size
  
  def print_params(self, out: Optional[TextIO] = None) -> None:
    """
    Write a human-readable dump of all parameters.
    
    Parameters:
    - out: text stream to write to, defaults to sys.stdout
    """
    if out is None:
      out = sys.stdout
    out.write(self._format_params())
  
  def _format_params(self) -> str:
    def row(values):
      return " ".join(repr(float(v)) for v in values)
    
    lines = [
      "  Projection = Omni",
      f"  Image size = {self.image_size[0]} {self.image_size[1]}",
      f"  Polynomial = {row(self._polynomial)}",
      f"  Principal point = {row(self._principal_point)}",
      f"  Inverse polynomial = {row(self._inverse_polynomial)}",
      "  Affine correction = ",
    ]
    lines.extend(row(r) for r in self._affine_correction)
    lines.append("  Affine correction inverse = ")
    lines.extend(row(r) for r in self._affine_correction_inverse)
    return "\n".join(lines) + "\n"
  
  def __str__(self):
    return self._format_params()
  
  def __repr__(self):
    return (f"OCamModel(size={self.image_size[0]}x{self.image_size[1]}, "
            f"principal_point=({self._principal_point[0]:.1f}, {self._principal_point[1]:.1f}))")
