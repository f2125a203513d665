"""
Offer Analyst key service.

Resolves which AI-provider credential an outbound call should use and
manages users' own (BYOK) provider keys.
"""

__version__ = "1.0.0"
