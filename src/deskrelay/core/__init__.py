"""Core domain package for deskrelay.

Core contains rules, matching, dispatch and mail threading logic without any
Telegram, broker or storage-specific code, keeping the business logic portable.
"""
