from .conditional_layer_slim import ConditionalLayerSLIM

__all__ = ["ConditionalLayerSLIM"]
