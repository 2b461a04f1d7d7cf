"""
Utility functions for the arbitrage engine.
"""
import math
import sys
from typing import Dict


def get_terminal_colors() -> Dict[str, str]:
    """
    Get ANSI color codes for terminal output.
    
    Returns empty strings if output is not a TTY (e.g., redirected to file),
    so log files stay free of escape codes.
    
    Returns:
        Dictionary with color codes: GREEN, CYAN, YELLOW, RED, DIM, RESET
    """
    use_color = sys.stdout.isatty()
    return {
        'GREEN': '\033[92m' if use_color else '',   # Amounts, counters, successes
        'CYAN': '\033[96m' if use_color else '',    # Tokens, venues, bundle ids
        'YELLOW': '\033[93m' if use_color else '',  # Prices, spreads, thresholds
        'RED': '\033[91m' if use_color else '',     # Errors and failed legs
        'DIM': '\033[90m' if use_color else '',     # Loop start/stop and other service messages
        'RESET': '\033[0m' if use_color else ''
    }


def percent_change(old: float, new: float) -> float:
    """Signed percent change from old to new (0.0 when old is not positive)."""
    if old <= 0:
        return 0.0
    return (new - old) / old * 100


def is_valid_price(price) -> bool:
    """A usable price is a finite number strictly greater than zero."""
    try:
        value = float(price)
    except (TypeError, ValueError):
        return False
    return math.isfinite(value) and value > 0
