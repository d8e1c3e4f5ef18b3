"""
OCam Camera Model Examples

This package contains the example script and the tests of the omnicam package:
- Projection, Jacobian and back-projection demonstration
- Tests for the model math, parameter files, ray maps and the cache
"""
