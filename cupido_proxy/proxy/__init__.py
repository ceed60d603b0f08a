from .server import create_app, log_startup_diagnostics
from .metrics import ProxyMetrics

__all__ = [
    "create_app",
    "log_startup_diagnostics",
    "ProxyMetrics",
]
