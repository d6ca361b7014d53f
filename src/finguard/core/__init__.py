"""
FinGuard core: configuration, logging, exceptions and counter stores
"""
