"""HTTP surface for ctxrag."""
