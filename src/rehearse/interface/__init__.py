"""
Interface Layer

Command line entry point.
"""
