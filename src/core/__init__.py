"""Core domain package for houmetna.

Core contains status-transition detection, notification recording, device
token bookkeeping, and push fan-out without any storage or provider-specific
code, keeping the business logic portable.
"""
