"""
Gateway Factory — Create the right warehouse gateway from configuration.

Configuration in settings.yaml:
    gateway:
      # "memory": in-memory dicts (development, testing)
      # "file":   JSON files on disk (demos, edge devices)
      # "rest":   remote warehouse API (production)
      backend: "memory"
      data_dir: "./data"
      latency_ms: 0
      seed_demo_data: true
      base_url: "https://wms.example.com/api/warehouse"

Usage:
    from gateway.factory import create_gateway
    gateway = create_gateway(settings.gateway)

Each call builds a new, independent gateway. Callers own its lifecycle
and should `await gateway.close()` when done.
"""
from __future__ import annotations

import structlog
from typing import Optional

from config.settings import GatewayConfig
from gateway.base import WarehouseGateway

logger = structlog.get_logger()


def create_gateway(config: Optional[GatewayConfig] = None, current_user_id: str = "1") -> WarehouseGateway:
    config = config or GatewayConfig()
    backend = config.backend

    if backend == "rest":
        if not config.base_url:
            raise ValueError("gateway.base_url is required for the rest backend")
        from gateway.rest import RESTWarehouseGateway
        gateway = RESTWarehouseGateway(config)
        logger.info("gateway_created", backend="rest", base_url=config.base_url)
        return gateway

    from gateway.memory import demo_seed
    seed = demo_seed() if config.seed_demo_data else None

    if backend == "file":
        from gateway.file import FileWarehouseGateway
        gateway = FileWarehouseGateway(
            data_dir=config.data_dir, seed=seed,
            latency_ms=config.latency_ms, current_user_id=current_user_id,
        )
        logger.info("gateway_created", backend="file", data_dir=config.data_dir)
        return gateway

    if backend != "memory":
        raise ValueError(f"Unknown gateway backend '{backend}'")

    from gateway.memory import InMemoryWarehouseGateway
    gateway = InMemoryWarehouseGateway(
        seed=seed, latency_ms=config.latency_ms, current_user_id=current_user_id,
    )
    logger.info("gateway_created", backend="memory")
    return gateway
