"""
Client for the upstream healthcare platform API.
"""
