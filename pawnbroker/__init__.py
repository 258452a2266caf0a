"""Back-office core for a pawn-brokerage platform."""

__version__ = "0.1.0"
