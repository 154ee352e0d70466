"""Sync client — the asynchronous side: transport, subscriptions, orchestration."""
