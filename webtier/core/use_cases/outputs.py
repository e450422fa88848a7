"""
Outputs — values the tier exposes to its clients.

``alb_dns_name`` is the address clients resolve to reach the Traffic
Director. The port is left off when it is the HTTP default, as a
load balancer DNS name would be.
"""

from __future__ import annotations

from webtier.core.models.tier import TierConfig


def compute_outputs(config: TierConfig) -> dict[str, str]:
    """All outputs, by name."""
    if config.lb_port == 80:
        dns_name = config.lb_host
    else:
        dns_name = f"{config.lb_host}:{config.lb_port}"
    return {
        "alb_dns_name": dns_name,
        "url": f"http://{dns_name}/",
    }
