"""
Warehouse Data Gateway — async access to orders, items and picking sessions.

Backends:
- memory: dict-backed, seeded demo data, simulated latency, fault injection
- file:   JSON-on-disk persistence on top of the memory backend
- rest:   remote warehouse API over httpx
"""
from gateway.base import WarehouseGateway
from gateway.factory import create_gateway
from gateway.memory import InMemoryWarehouseGateway, demo_seed
from gateway.file import FileWarehouseGateway

__all__ = [
    "WarehouseGateway", "create_gateway",
    "InMemoryWarehouseGateway", "demo_seed", "FileWarehouseGateway",
]
