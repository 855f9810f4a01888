"""
NIA Excellence Hub
Blueprint registry. Every blueprint mounts under ``/api``.
"""
