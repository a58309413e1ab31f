"""
Infrastructure Layer

Concrete storage backends and port adapters.
"""
