"""Error types for Narrative Market."""


class InvalidInput(ValueError):
    """Malformed or out-of-range arguments."""


class DimensionMismatch(InvalidInput):
    """Two vectors compared for similarity have different lengths."""

    def __init__(self, left: int, right: int):
        super().__init__(
            f"Embeddings must have the same dimensions: {left} != {right}"
        )
        self.left = left
        self.right = right


class ServiceUnavailable(RuntimeError):
    """The embedding backend could not produce a vector."""
