"""Per-endpoint-class throughput policies with bounded retry."""
