"""Adapters that connect the core ports to Telegram, SQLite, SMTP and HTTP."""
