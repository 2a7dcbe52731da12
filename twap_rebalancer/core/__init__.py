"""
Core rebalancing algorithms
"""
