"""Cron-driven WireGuard client connect/disconnect notifier."""
