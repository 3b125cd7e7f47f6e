"""SolSniff: Solana ecosystem narrative detection and build-idea generation."""

__version__ = "0.1.0"
