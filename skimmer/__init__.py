"""Skimmer - unattended profit-skimming agent on Solana."""

__version__ = "0.1.0"
