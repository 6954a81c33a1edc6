"""
Request/response and worker message models.
"""
