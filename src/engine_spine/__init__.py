"""
engine-spine - Component lifecycle orchestration for the source{d} engine.

Decides which containerized services must run to satisfy a request, starts
them in dependency order exactly once each, resolves which image version is
safe to run, reports slow operations to the user and turns docker daemon
diagnostics into structured errors.

Subpackages:
- engine_spine.components: Registry, start configuration, orchestrator
- engine_spine.docker: Docker CLI gateway, tag resolution, error classifier
- engine_spine.core: Error hierarchy
- engine_spine.framework: Structured logging
- engine_spine.cli: ``engine-spine`` command line
"""

__version__ = "0.1.0"
