"""Feed payload parsing and normalization into CanonicalEvents."""

from .normalizer import FormatNormalizer

__all__ = ["FormatNormalizer"]
