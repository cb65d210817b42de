"""
Correctness Test Suite for the Conditional SLIM Layer

This package contains algorithmic correctness tests for the invertible layers
and for the composite conditional layer built from them.

Test Modules:
- test_invertibility.py: Tests forward/inverse consistency of every layer and of the Y-lane
- test_logdet_autodiff.py: Validates log-determinants against autodiff Jacobians
- test_gradcheck.py: Verifies the memory-efficient backward pass against autograd and finite differences

All test failures include the **critical-bug** tag for automatic indexing.
"""

