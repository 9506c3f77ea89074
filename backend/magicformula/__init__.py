"""Magic Formula trader: factor ranking, capital allocation and position lifecycle."""

__version__ = "0.1.0"
