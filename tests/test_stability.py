"""
Numerical Stability Tests

This module stress-tests the conditional layer with badly scaled inputs. It
detects NaN/Inf values in the forward pass and in the memory-efficient
backward pass, and flags exploding gradients as high-priority issues.
"""

import pytest
import torch
from typing import List, Tuple

from slimflow.models.conditional_layer_slim import ConditionalLayerSLIM
from slimflow.utils import randomize_parameters, conditional_slim_loss

# Global configuration
GRADIENT_EXPLOSION_THRESHOLD = 1e6
# Inputs can only be rebuilt while no coupling scale underflows against its shift.
# At input magnitude 1e3 this holds for conditioner weights up to about this std.
BACKWARD_PARAM_STD = 0.02
RECONSTRUCTION_TOLERANCE = 1e-8
BATCH_SIZE = 4
X_SHAPE = (BATCH_SIZE, 4, 8, 8)
Y_SHAPE = (BATCH_SIZE, 2, 8, 8)


def get_layer(std: float = 0.1) -> ConditionalLayerSLIM:
    """Layer with a random dense operator and randomized couplings."""
    generator = torch.Generator().manual_seed(0)
    op = torch.randn(128, 128, generator=generator) / 12
    layer = ConditionalLayerSLIM(8, 8, 4, 16, 8, 8, 2, 16, BATCH_SIZE, op, k1=1, k2=3, p1=1, p2=0)
    return randomize_parameters(layer, std=std, generator=generator)


class StressInputGenerator:
    """Generates various stress test inputs for numerical stability testing."""

    @staticmethod
    def generate_scaled(scale: float) -> Tuple[torch.Tensor, torch.Tensor]:
        """Generate random signs times ``scale`` for X and Y."""
        signs_x = torch.randint(0, 2, X_SHAPE) * 2 - 1
        signs_y = torch.randint(0, 2, Y_SHAPE) * 2 - 1
        return signs_x * scale, signs_y * scale

    @staticmethod
    def generate_edge_cases() -> List[Tuple[str, torch.Tensor, torch.Tensor]]:
        """Generate various edge case inputs."""
        torch.manual_seed(0)
        edge_cases = []

        # Zero inputs
        edge_cases.append(("zeros", torch.zeros(X_SHAPE), torch.zeros(Y_SHAPE)))

        # Small and large scalars
        edge_cases.append(("small_scalars", *StressInputGenerator.generate_scaled(1e-6)))
        edge_cases.append(("large_scalars", *StressInputGenerator.generate_scaled(1e3)))

        # Mixed scale inputs
        mixed_x, mixed_y = torch.randn(X_SHAPE), torch.randn(Y_SHAPE)
        mixed_x[:, 0] *= 1e3  # First channel very large
        mixed_y[:, 1] *= 1e-6  # Second channel very small
        edge_cases.append(("mixed_scale", mixed_x, mixed_y))

        # Noise-free observation of a smooth signal
        grid = torch.linspace(-1, 1, 8)
        smooth = torch.sin(3 * grid)[None, None, :, None] * torch.cos(2 * grid)[None, None, None, :]
        edge_cases.append(("smooth", smooth.expand(X_SHAPE).clone(), smooth.expand(Y_SHAPE).clone()))

        return edge_cases


class StabilityChecker:
    """Utilities for checking numerical stability."""

    @staticmethod
    def check_finite_tensor(tensor: torch.Tensor, name: str) -> List[str]:
        """Check if tensor contains only finite values."""
        issues = []

        if not torch.isfinite(tensor).all():
            nan_count = torch.isnan(tensor).sum().item()
            inf_count = torch.isinf(tensor).sum().item()

            if nan_count > 0:
                issues.append(f"**high-priority perf/stability issue** {name} contains {nan_count} NaN values")
            if inf_count > 0:
                issues.append(f"**high-priority perf/stability issue** {name} contains {inf_count} Inf values")

        return issues

    @staticmethod
    def check_gradient_explosion(grad: torch.Tensor, name: str) -> List[str]:
        """Check for exploding gradients."""
        issues = []

        grad_norm = torch.norm(grad).item()
        if grad_norm > GRADIENT_EXPLOSION_THRESHOLD:
            issues.append(f"**high-priority perf/stability issue** Exploding gradient in {name}: norm = {grad_norm:.2e}")

        return issues


EDGE_CASES = StressInputGenerator.generate_edge_cases()


@pytest.mark.parametrize("case_name,X,Y", EDGE_CASES, ids=[case[0] for case in EDGE_CASES])
class TestNumericalStability:
    """Numerical stability of the forward and backward passes."""

    def setup_method(self):
        """Setup for each test method."""
        torch.manual_seed(42)
        self.layer = get_layer()
        self.stability_checker = StabilityChecker()

    def test_forward_is_finite(self, case_name, X, Y):
        """Zx, Zy and logdet stay finite for stress inputs."""
        with torch.no_grad():
            Zx, Zy, logdet = self.layer.forward(X, Y)

        issues = []
        issues += self.stability_checker.check_finite_tensor(Zx, f"{case_name}/Zx")
        issues += self.stability_checker.check_finite_tensor(Zy, f"{case_name}/Zy")
        issues += self.stability_checker.check_finite_tensor(logdet, f"{case_name}/logdet")

        if issues:
            pytest.fail("\n".join(issues))

    def test_backward_is_finite(self, case_name, X, Y):
        """The rebuilding backward pass produces finite, bounded gradients and exact inputs."""
        layer = get_layer(std=BACKWARD_PARAM_STD).double()
        X, Y = X.double(), Y.double()

        with torch.no_grad():
            Zx, Zy, logdet = layer.forward(X, Y)
        _, dZx, dZy = conditional_slim_loss(Zx, Zy, logdet)
        dX, dY, X_rec, Y_rec = layer.backward(dZx, dZy, Zx, Zy)

        issues = []
        issues += self.stability_checker.check_finite_tensor(dX, f"{case_name}/dX")
        issues += self.stability_checker.check_finite_tensor(dY, f"{case_name}/dY")
        issues += self.stability_checker.check_gradient_explosion(dX, f"{case_name}/dX")
        issues += self.stability_checker.check_gradient_explosion(dY, f"{case_name}/dY")
        for i, p in enumerate(layer.get_params()):
            issues += self.stability_checker.check_finite_tensor(p.grad, f"{case_name}/param[{i}].grad")
        layer.clear_grad()

        # Relative error, absolute below unit norm (zero and tiny inputs)
        for name, rebuilt, original in (("X", X_rec, X), ("Y", Y_rec, Y)):
            error = (torch.norm(rebuilt - original) / torch.norm(original).clamp_min(1.0)).item()
            if error > RECONSTRUCTION_TOLERANCE:
                issues.append(f"**high-priority perf/stability issue** {case_name}/{name} rebuilt with "
                              f"error {error:.2e}")

        if issues:
            pytest.fail("\n".join(issues))


if __name__ == "__main__":
    pytest.main([__file__])
