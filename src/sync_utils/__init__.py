"""
Shared infrastructure for the offline sync engine

Provides:
- db_pool: pyodbc connection pooling with health checks
- logging: structured logging setup
- tracing: OpenTelemetry spans
- metrics: Prometheus metrics
- retry: backoff for transient database errors
- sql_safety: identifier validation and quoting
- vault_client: HashiCorp Vault credential lookup
"""

__version__ = "1.0.0"
__all__ = ["db_pool", "logging", "tracing", "metrics", "retry", "sql_safety", "vault_client"]
