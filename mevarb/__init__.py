"""
Cross-venue arbitrage and bundle engine for Solana DEXes.
"""
__version__ = "0.1.0"
