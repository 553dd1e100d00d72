"""deskrelay: turn chat group traffic into durable helpdesk side effects."""
