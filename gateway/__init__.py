"""
Unified Gateway
Capability-routing reverse proxy with a mockable endpoint registry
"""

__version__ = "1.0.0"
