"""
FinGuard operator CLI
"""
