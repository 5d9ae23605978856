"""
Aggregation services
"""
