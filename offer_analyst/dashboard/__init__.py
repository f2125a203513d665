"""
Dashboard API for managing BYOK provider keys.
"""
