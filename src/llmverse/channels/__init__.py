"""Chat platform channels."""
