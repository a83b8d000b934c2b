# ============================================================================
# LayerParity Unit Tests Package
# ============================================================================
#
# Unit tests for the individual LayerParity modules.
#
# Running Tests:
# --------------
#   pytest tests/unit -v
#   pytest tests/unit/test_harness.py -v
#   pytest tests/unit -v -m "gpu"
#
# Test Modules:
# -------------
#   test_device_movement.py  - get_device, gpu()/cpu() movement, residency,
#                              gradients flowing through device transfers.
#   test_autodiff.py         - named parameter collection, pullback,
#                              input gradients, isapprox.
#   test_layers.py           - layer constructors used by the case table.
#   test_harness.py          - parity_gradtest / check_layer outcomes
#                              (passed, failed, xfail, xpass) and the
#                              zero-input / no-bias check.
#
# ============================================================================

"""LayerParity unit tests package."""
