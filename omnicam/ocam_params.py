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

import math
import os
import re
import yaml
from typing import List, Optional, Sequence

from .ocam_model import OCamModel, POLYNOMIAL_SIZE, INVERSE_POLYNOMIAL_ORDER

YAML_EXTENSIONS = ('.yaml', '.yml')

# Plain decimal literals only: no nan, inf or underscore separators
_INTEGER_PATTERN = re.compile(r'[+-]?\d+')
_DECIMAL_PATTERN = re.compile(r'[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?')


class OCamParseError(ValueError):
  """Raised when a parameter file is malformed or truncated."""


class OCamParams:
  """
  Raw OCam calibration parameters as read from a parameter file.
  
  This is the bundle before derivation: the distortion triple is kept as read,
  the affine correction is only built when an OCamModel is created from it.
  """
  
  def __init__(self, width=None, height=None, polynomial=None, principal_point=None,
               distortion=None, inverse_polynomial=None, camera_name=None):
    """
    Initialize OCam parameters.
    
    Parameters:
    - width, height: image size in pixels
    - polynomial: 5 back-projection polynomial coefficients
    - principal_point: (x, y) of the optical axis in pixels
    - distortion: 3 affine distortion values (d0, d1, d2)
    - inverse_polynomial: 12 projection polynomial coefficients
    - camera_name: optional label, only carried by YAML files
    """
    self.width = width
    self.height = height
    self.polynomial = list(polynomial) if polynomial is not None else None
    self.principal_point = list(principal_point) if principal_point is not None else None
    self.distortion = list(distortion) if distortion is not None else None
    self.inverse_polynomial = list(inverse_polynomial) if inverse_polynomial is not None else None
    self.camera_name = camera_name
  
  @classmethod
  def from_model(cls, model: OCamModel, camera_name=None) -> 'OCamParams':
    """Recover the raw parameter bundle from a constructed model."""
    width, height = model.get_image_size()
    return cls(
      width=width, height=height,
      polynomial=model.polynomial.tolist(),
      principal_point=model.principal_point.tolist(),
      distortion=model.distortion.tolist(),
      inverse_polynomial=model.inverse_polynomial.tolist(),
      camera_name=camera_name
    )
  
  def to_dict(self):
    """
    Convert parameters to dictionary format.
    
    Returns:
    Dictionary with the same keys as the YAML parameter file.
    """
    result = {
      'image_width': self.width,
      'image_height': self.height,
      'polynomial': self.polynomial,
      'principal_point': self.principal_point,
      'distortion': self.distortion,
      'inverse_polynomial': self.inverse_polynomial
    }
    if self.camera_name is not None:
      result['camera_name'] = self.camera_name
    return result
  
  def get_image_size(self):
    """Tuple (width, height) of image dimensions."""
    return (self.width, self.height)
  
  def validate(self):
    """
    Check that every group is present with the right number of values.
    
    Values themselves are not range checked; any finite number is accepted.
    
    Raises:
    ValueError if a group is missing or has the wrong size.
    """
    if self.width is None or self.height is None:
      raise ValueError("Image size is missing")
    
    expected = [
      ('polynomial', self.polynomial, POLYNOMIAL_SIZE),
      ('principal_point', self.principal_point, 2),
      ('distortion', self.distortion, 3),
      ('inverse_polynomial', self.inverse_polynomial, INVERSE_POLYNOMIAL_ORDER)
    ]
    for name, values, size in expected:
      if values is None:
        raise ValueError(f"{name} is missing")
      if len(values) != size:
        raise ValueError(f"{name} must have {size} elements, got {len(values)}")
  
  def to_model(self) -> OCamModel:
    """Build the camera model, precomputing the affine correction and its inverse."""
    self.validate()
    return OCamModel(
      (self.width, self.height), self.polynomial, self.principal_point,
      self.distortion, self.inverse_polynomial
    )
  
  def __str__(self):
    return (f"OCamParams(name={self.camera_name}, size={self.width}x{self.height}, "
            f"polynomial={self.polynomial}, principal_point={self.principal_point}, "
            f"distortion={self.distortion}, inverse_polynomial={self.inverse_polynomial})")
  
  def __repr__(self):
    return self.__str__()


def _parse_integer(token: str) -> int:
  if not _INTEGER_PATTERN.fullmatch(token):
    raise ValueError(f"Not an integer literal: {token}")
  return int(token)


def _parse_decimal(token: str) -> float:
  if not _DECIMAL_PATTERN.fullmatch(token):
    raise ValueError(f"Not a decimal literal: {token}")
  value = float(token)
  if not math.isfinite(value):
    raise ValueError(f"Value out of range: {token}")
  return value


def _yaml_integer(value) -> int:
  if isinstance(value, bool) or not isinstance(value, int):
    raise ValueError(f"Image size must be an integer, got {value!r}")
  return value


def _yaml_decimals(values) -> List[float]:
  result = []
  for value in values:
    if isinstance(value, bool):
      raise ValueError(f"Expected a number, got {value!r}")
    value = float(value)
    if not math.isfinite(value):
      raise ValueError(f"Parameter values must be finite, got {value}")
    result.append(value)
  return result


class _TokenReader:
  """Sequential reader over whitespace separated tokens."""
  
  def __init__(self, text: str):
    self._tokens = text.split()
    self._position = 0
  
  def read(self, count: int, convert, group: str) -> List:
    values = []
    for _ in range(count):
      if self._position >= len(self._tokens):
        raise OCamParseError(f"Reading {group} fails.")
      token = self._tokens[self._position]
      self._position += 1
      try:
        values.append(convert(token))
      except ValueError:
        raise OCamParseError(f"Reading {group} fails.")
    return values


def parse_ocam_params_text(text: str) -> OCamParams:
  """
  Parse OCam parameters from the plain text format.
  
  Expected token order (whitespace or newline separated, no labels):
  width height / 5 polynomial / 2 principal point / 3 distortion / 12 inverse polynomial
  
  Raises:
  OCamParseError naming the first group that could not be read.
  """
  reader = _TokenReader(text)
  width, height = reader.read(2, _parse_integer, "image size")
  polynomial = reader.read(POLYNOMIAL_SIZE, _parse_decimal, "polynomial")
  principal_point = reader.read(2, _parse_decimal, "principal point")
  distortion = reader.read(3, _parse_decimal, "distortion")
  inverse_polynomial = reader.read(INVERSE_POLYNOMIAL_ORDER, _parse_decimal, "inverse polynomial")
  
  return OCamParams(
    width=width, height=height,
    polynomial=polynomial,
    principal_point=principal_point,
    distortion=distortion,
    inverse_polynomial=inverse_polynomial
  )


def parse_ocam_params(filename) -> OCamParams:
  """
  Parse OCam parameters from a plain text parameter file.
  
  Parameters:
  - filename: path to the parameter file
  
  Returns:
  OCamParams object with loaded parameters.
  
  Raises:
  FileNotFoundError if the file doesn't exist.
  OCamParseError if the content is malformed or truncated.
  """
  with open(filename, 'r', encoding='utf-8') as f:
    try:
      text = f.read()
    except UnicodeDecodeError as e:
      raise OCamParseError(f"Invalid parameter file '{filename}': {e}")
  
  try:
    return parse_ocam_params_text(text)
  except OCamParseError as e:
    raise OCamParseError(f"Invalid parameter file '{filename}': {e}")


def parse_ocam_params_yaml(filename) -> OCamParams:
  """
  Parse OCam parameters from a YAML file.
  
  Expected keys: image_width, image_height, polynomial, principal_point,
  distortion, inverse_polynomial and optionally camera_name.
  
  Raises:
  FileNotFoundError if the file doesn't exist.
  OCamParseError if the YAML is invalid or parameters are missing.
  """
  try:
    with open(filename, 'r', encoding='utf-8') as f:
      data = yaml.safe_load(f)
  except FileNotFoundError:
    raise FileNotFoundError(f"OCam parameters file not found: {filename}")
  except (yaml.YAMLError, UnicodeDecodeError) as e:
    raise OCamParseError(f"Invalid YAML format in file '{filename}': {e}")
  
  if not isinstance(data, dict):
    raise OCamParseError(f"Invalid YAML format in file '{filename}': expected a mapping")
  
  try:
    params = OCamParams(
      width=_yaml_integer(data['image_width']),
      height=_yaml_integer(data['image_height']),
      polynomial=_yaml_decimals(data['polynomial']),
      principal_point=_yaml_decimals(data['principal_point']),
      distortion=_yaml_decimals(data['distortion']),
      inverse_polynomial=_yaml_decimals(data['inverse_polynomial']),
      camera_name=data.get('camera_name')
    )
    params.validate()
    return params
  
  except KeyError as e:
    raise OCamParseError(f"Missing required parameter in YAML file: {e}")
  except (TypeError, ValueError) as e:
    raise OCamParseError(f"Invalid parameter format in YAML file: {e}")


def _format_values(values: Sequence) -> str:
  return " ".join(repr(float(v)) for v in values)


def save_ocam_params(params: OCamParams, filename) -> None:
  """
  Write parameters in the plain text format read by parse_ocam_params.
  
  Values are written with repr so a reload gives bit-identical floats.
  """
  params.validate()
  lines = [
    f"{int(params.width)} {int(params.height)}",
    _format_values(params.polynomial),
    _format_values(params.principal_point),
    _format_values(params.distortion),
    _format_values(params.inverse_polynomial)
  ]
  with open(filename, 'w') as f:
    f.write("\n".join(lines) + "\n")


def save_ocam_params_yaml(params: OCamParams, filename) -> None:
  """Write parameters as YAML with the keys read by parse_ocam_params_yaml."""
  params.validate()
  data = params.to_dict()
  data['image_width'] = int(params.width)
  data['image_height'] = int(params.height)
  for key in ('polynomial', 'principal_point', 'distortion', 'inverse_polynomial'):
    data[key] = [float(v) for v in data[key]]
  with open(filename, 'w') as f:
    yaml.safe_dump(data, f, default_flow_style=None, sort_keys=False)


def load_ocam(filename) -> Optional[OCamModel]:
  """
  Load an OCam camera model from a parameter file.
  
  Files ending in .yaml or .yml are read as YAML, anything else as the plain
  text format.
  
  Parameters:
  - filename: path to the parameter file
  
  Returns:
  OCamModel, or None if the file could not be opened.
  
  Raises:
  OCamParseError if the file was opened but its content is malformed.
  """
  is_yaml = os.path.splitext(str(filename))[1].lower() in YAML_EXTENSIONS
  try:
    if is_yaml:
      params = parse_ocam_params_yaml(filename)
    else:
      params = parse_ocam_params(filename)
  except OSError as e:
    print(f"Fail to open file {filename}: {e}")
    return None
  
  return params.to_model()


def save_ocam(model: OCamModel, filename) -> None:
  """Save a camera model, choosing the format from the file extension like load_ocam."""
  params = OCamParams.from_model(model)
  if os.path.splitext(str(filename))[1].lower() in YAML_EXTENSIONS:
    save_ocam_params_yaml(params, filename)
  else:
    save_ocam_params(params, filename)
