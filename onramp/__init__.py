"""
Fiat-to-Solana onramp backend.

Brokers hosted checkout sessions, funds user wallets with SOL and swaps SOL
into SPL tokens through the Jupiter aggregator.
"""

__version__ = "0.1.0"
