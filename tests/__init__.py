"""
codeindex test suite.

- Unit tests for individual components
- Integration tests for the index -> edit -> reindex -> search flow
"""
