"""
Application Layer

Use cases built on the domain: scheduling, optimization and review sessions.
"""
