"""Startup configuration for mcprelay.

Configuration is resolved once, validated by pydantic, and passed into the
proxy as an immutable object.
"""
