"""
tabledb Test Suite.

This package contains:
- unit/: Unit tests (no filesystem beyond temp dirs)
- integration/: Committer and Database tests against both file managers
"""
