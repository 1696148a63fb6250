"""Payment gateway clients."""

from typing import Optional

from ..config import GatewayConfig
from .base import (
    GatewayProbeBase,
    GatewayPaymentRecord,
    ProbeResult,
    CancelRequest,
    CancelResult,
    PaymentState,
)
from .portone import PortOneGateway
from .simulator import (
    SimulatorGateway,
    SimulatorConfig,
    SimulatedCall,
)


def get_gateway(provider: str = "portone", config: Optional[GatewayConfig] = None) -> GatewayProbeBase:
    """Factory function to get the gateway client for a provider.

    Args:
        provider: Gateway provider name.
        config: Optional gateway configuration.

    Returns:
        GatewayProbeBase implementation for the provider.

    Raises:
        ValueError: If the provider is not supported.
    """
    provider = provider.lower()
    if provider == "portone":
        return PortOneGateway(config=config)
    if provider == "simulator":
        return SimulatorGateway()
    raise ValueError(f"Unsupported gateway provider: {provider}")


__all__ = [
    "GatewayProbeBase",
    "GatewayPaymentRecord",
    "ProbeResult",
    "CancelRequest",
    "CancelResult",
    "PaymentState",
    "PortOneGateway",
    "SimulatorGateway",
    "SimulatorConfig",
    "SimulatedCall",
    "get_gateway",
]
