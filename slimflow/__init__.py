"""
Invertible conditional layers for inverse imaging problems.

The central piece is :class:`ConditionalLayerSLIM`, a conditional HINT layer
whose signal lane is conditioned on observed data through a linear forward
operator.
"""

__version__ = "0.1.0"

from .config import ConditionalLayerSLIMConfig
from .models.conditional_layer_slim import ConditionalLayerSLIM

__all__ = ["ConditionalLayerSLIM", "ConditionalLayerSLIMConfig"]
