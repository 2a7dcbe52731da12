"""
TWAP-driven liquidity rebalancer: pure kernel plus integration shell.
"""
