# ============================================================================
# LayerParity Test Fixtures
# ============================================================================
# Shared pytest fixtures for the LayerParity test suite.
#
# Usage:
#   Fixtures are automatically available to all tests.
#   Use by adding fixture name as function argument:
#
#       def test_example(device, sample_image):
#           report = parity_gradtest("Conv", [Conv], sample_image, (2, 2), (1, 3),
#                                    device=device)
#           assert report.ok
# ============================================================================

import sys
from pathlib import Path
from typing import Any, Dict

import numpy as np
import pytest
import torch

# Add project root to path for imports
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))


# ============================================================================
# Configuration Constants
# ============================================================================

TEST_SEED = 42
IMAGE_SHAPE = (1, 1, 28, 28)  # one 28x28 single-channel image, NCHW


# ============================================================================
# Setup and Teardown
# ============================================================================

def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "slow: mark test as slow running")
    config.addinivalue_line("markers", "gpu: mark test as requiring GPU")
    config.addinivalue_line("markers", "unit: mark as unit test")
    config.addinivalue_line("markers", "integration: mark as integration test")


@pytest.fixture(scope="session", autouse=True)
def set_random_seeds():
    """Set random seeds for reproducibility."""
    torch.manual_seed(TEST_SEED)
    np.random.seed(TEST_SEED)
    if torch.cuda.is_available():
        torch.cuda.manual_seed_all(TEST_SEED)
    yield


@pytest.fixture(scope="session", autouse=True)
def disable_tf32():
    """
    TF32 matmuls/convolutions on Ampere+ GPUs lose precision well beyond
    the 1e-4 parity tolerance, so keep full float32 for the whole session.
    """
    old_matmul = torch.backends.cuda.matmul.allow_tf32
    old_cudnn = torch.backends.cudnn.allow_tf32
    torch.backends.cuda.matmul.allow_tf32 = False
    torch.backends.cudnn.allow_tf32 = False
    yield
    torch.backends.cuda.matmul.allow_tf32 = old_matmul
    torch.backends.cudnn.allow_tf32 = old_cudnn


# ============================================================================
# Device Fixtures
# ============================================================================

@pytest.fixture(scope="session")
def device() -> torch.device:
    """
    Parity device: CUDA if available, else CPU.

    On CPU-only machines the harness compares the host against a second
    host copy, which still exercises every code path.
    """
    if torch.cuda.is_available():
        return torch.device("cuda")
    return torch.device("cpu")


@pytest.fixture(scope="session")
def cpu_device() -> torch.device:
    """Get CPU device (for tests whose outcome must not depend on the GPU)."""
    return torch.device("cpu")


# ============================================================================
# Data Fixtures
# ============================================================================

@pytest.fixture
def sample_image() -> torch.Tensor:
    """Random single-channel 28x28 image, shape (1, 1, 28, 28)."""
    return torch.rand(*IMAGE_SHAPE)


@pytest.fixture
def zero_image() -> torch.Tensor:
    """All-zero image, shape (1, 1, 28, 28)."""
    return torch.zeros(*IMAGE_SHAPE)


@pytest.fixture
def sample_matrix() -> torch.Tensor:
    """Small (3, 3) matrix for function-layer tests."""
    return torch.rand(3, 3)


# ============================================================================
# Config Fixtures
# ============================================================================

@pytest.fixture
def test_config() -> Dict[str, Any]:
    """Minimal parity configuration matching configs/parity.yaml structure."""
    return {
        "device": "cpu",
        "rtol": 1e-4,
        "atol": 1e-4,
        "seed": 7,
        "groups": ["Pooling", "LayerNorm 2"],
        "broken_layers": ["DepthwiseConv", "AlphaDropout"],
        "zero_bias": False,
    }


@pytest.fixture
def temp_config_file(test_config, tmp_path) -> Path:
    """
    Create a temporary config file.

    Returns:
        Path: Path to the temporary config file
    """
    import yaml

    config_path = tmp_path / "parity.yaml"
    with open(config_path, "w") as f:
        yaml.safe_dump(test_config, f)
    return config_path
