"""TopoMap – build pipeline package.

This package contains the stage table, the artifact helpers and the
external command runner used by the map build orchestrator.
"""
