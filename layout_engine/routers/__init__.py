"""
HTTP routers.
"""
