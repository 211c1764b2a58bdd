"""Remote store protocol and backends."""
