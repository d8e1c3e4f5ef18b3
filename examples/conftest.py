"""Shared fixtures for the OCam model tests."""

import numpy as np
import pytest
from numpy.polynomial import polynomial as P

from omnicam import OCamModel

# Back-projection polynomial of a typical ~190 degree lens, z = -P(rho)
POLYNOMIAL = [-250.0, 0.0, 1.0e-3, 0.0, 0.0]
DISTORTION = [1.0005, 0.0003, -0.0002]


def fit_inverse_polynomial(polynomial, rho_max=400.0, samples=400):
  """
  Fit the 12 inverse polynomial coefficients so that projection undoes back-projection.
  
  A bearing built from radius rho has incidence angle theta = atan(P(rho) / rho);
  the inverse polynomial maps theta back to rho.
  """
  rho = np.linspace(0.5, rho_max, samples)
  theta = np.arctan(P.polyval(rho, polynomial) / rho)
  return P.polyfit(theta, rho, 11)


def make_model(image_size=(1280, 960), principal_point=(640.5, 480.25), distortion=None):
  if distortion is None:
    distortion = DISTORTION
  return OCamModel(image_size, POLYNOMIAL, principal_point, distortion,
                   fit_inverse_polynomial(POLYNOMIAL))


@pytest.fixture
def ocam_model():
  return make_model()


@pytest.fixture
def small_ocam_model():
  return make_model(image_size=(64, 48), principal_point=(32.0, 24.0), distortion=[1.0, 0.0, 0.0])


@pytest.fixture
def sample_points():
  """Points in front of the camera, off the optical axis, inside the fitted field of view."""
  return np.array([
    [1.0, 0.5, 2.0],
    [-0.3, 0.8, 1.5],
    [2.0, -1.0, 1.2],
    [0.1, 0.05, 3.0],
    [-1.5, -2.0, 1.0],
  ])
