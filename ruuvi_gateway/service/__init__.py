"""
Gateway service.
"""

from .gateway import GatewayStats, RuuviGateway

__all__ = ["GatewayStats", "RuuviGateway"]
