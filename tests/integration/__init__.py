# ============================================================================
# LayerParity Integration Tests Package
# ============================================================================
# Integration tests for LayerParity end-to-end workflows.
#
# These tests verify that different components work together correctly:
#   - The full case table run through the parity harness
#   - Zero-input / no-bias checks for the convolution family and Dense
#   - Configuration file loading, validation and CLI overrides
#   - The scripts/run_layer_parity.py runner
#
# Run integration tests:
#   pytest tests/integration -v
#   pytest tests/integration -v -m "not slow"
#
# Test Files:
#   - test_case_table.py      : One test per layer of the case table
#   - test_config_loading.py  : Configuration parsing and the runner script
#
# Prerequisites:
#   - layerparity package (layerparity/*.py)
#   - Configuration files (configs/parity.yaml)
#   - Runner script (scripts/run_layer_parity.py)
# ============================================================================
