"""
HTTP transport
"""
