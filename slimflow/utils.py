import torch
import numpy as np


def randomize_parameters(layer, std=0.1, generator=None):
    """
    Draws every trainable parameter of ``layer`` from N(0, std^2).

    Freshly built couplings are the identity (their output convolutions start
    at zero); this moves them to a generic, still invertible, state.
    """
    with torch.no_grad():
        for p in layer.parameters():
            p.copy_(torch.randn(p.shape, generator=generator, dtype=p.dtype).to(p.device) * std)
    return layer


def conditional_slim_loss(Zx, Zy, logdet):
    """
    Negative log-likelihood of (Zx, Zy) under a standard normal, per sample:
        0.5 * ||Zx||^2 / B + 0.5 * ||Zy||^2 / B - mean(logdet)

    Returns:
        torch.Tensor: The scalar loss.
        torch.Tensor: dZx, gradient of the loss with respect to Zx.
        torch.Tensor: dZy, gradient of the loss with respect to Zy.

    The gradients are in the form expected by ``ConditionalLayerSLIM.backward``.
    """
    batch_size = Zx.shape[0]
    loss = 0.5 * Zx.pow(2).sum() / batch_size + 0.5 * Zy.pow(2).sum() / batch_size - logdet.mean()
    return loss, Zx / batch_size, Zy / batch_size


def gradient_test(f, x, dx, grad, h=1e-2, steps=6, factor=2.0):
    """
    Finite-difference test of a gradient.

    For step sizes h, h/factor, ... compares
        err1 = |f(x + h dx) - f(x)|                     (first order, O(h))
        err2 = |f(x + h dx) - f(x) - h <dx, grad>|      (second order, O(h^2))
    If ``grad`` is correct, err2 shrinks like h^2 while err1 only shrinks like h.

    Args:
        f (callable): Scalar function of a tensor.
        x (torch.Tensor): Point to test at.
        dx (torch.Tensor): Perturbation direction.
        grad (torch.Tensor): Gradient of f at x claimed by the code under test.

    Returns:
        np.ndarray: err1 for every step.
        np.ndarray: err2 for every step.
    """
    f0 = float(f(x))
    directional = float(torch.sum(dx * grad))
    err1, err2 = [], []
    for _ in range(steps):
        fh = float(f(x + h * dx))
        err1.append(abs(fh - f0))
        err2.append(abs(fh - f0 - h * directional))
        h = h / factor
    return np.array(err1), np.array(err2)


def diagnose_conditional_layer(layer, X, Y, layer_name="ConditionalLayerSLIM"):
    """
    Diagnostic function to check if a conditional layer is working correctly.
    """
    with torch.no_grad():
        Zx, Zy, logdet = layer.forward(X, Y)
        X_rec, Y_rec = layer.inverse(Zx, Zy)

    x_error = (torch.norm(X - X_rec) / torch.norm(X)).item()
    y_error = (torch.norm(Y - Y_rec) / torch.norm(Y)).item()

    print(f"\n=== {layer_name} Diagnostics ===")
    print(f"Forward pass - Zx range: [{Zx.min():.3f}, {Zx.max():.3f}]")
    print(f"Forward pass - Zy range: [{Zy.min():.3f}, {Zy.max():.3f}]")
    print(f"Forward pass - logdet range: [{logdet.min():.3f}, {logdet.max():.3f}]")
    print(f"Round-trip error (X → Zx → X): {x_error:.2e}")
    print(f"Round-trip error (Y → Zy → Y): {y_error:.2e}")

    # Memory-efficient backward against autograd through the forward pass
    X_ = X.detach().clone().requires_grad_(True)
    Y_ = Y.detach().clone().requires_grad_(True)
    layer.clear_grad()
    Zx_, Zy_, logdet_ = layer.forward(X_, Y_)
    loss, dZx, dZy = conditional_slim_loss(Zx_, Zy_, logdet_)
    loss.backward()
    dX, dY, _, _ = layer.backward(dZx.detach(), dZy.detach(), Zx_.detach(), Zy_.detach())
    layer.clear_grad()

    dx_error = (torch.norm(dX - X_.grad) / torch.norm(X_.grad).clamp_min(1e-12)).item()
    dy_error = (torch.norm(dY - Y_.grad) / torch.norm(Y_.grad).clamp_min(1e-12)).item()
    print(f"Backward vs autograd - dX error: {dx_error:.2e}")
    print(f"Backward vs autograd - dY error: {dy_error:.2e}")

    if max(x_error, y_error) > 1e-4:
        print("⚠️  WARNING: High round-trip error - layer may not be invertible")
    if max(dx_error, dy_error) > 1e-4:
        print("⚠️  WARNING: Backward pass disagrees with autograd")

    return {
        'logdet_range': (logdet.min().item(), logdet.max().item()),
        'roundtrip_error': {'X': x_error, 'Y': y_error},
        'backward_error': {'X': dx_error, 'Y': dy_error},
    }
