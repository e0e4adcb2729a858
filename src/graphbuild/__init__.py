"""graphbuild - declarative build graphs for native C++ projects.

Configures a build directory from a ``gbuild.ini`` project descriptor:
resolves a build profile, discovers sources, bootstraps external test and
benchmark frameworks, declares the target graph and registers optional
verification tasks (format, lint, static analysis).
"""

__version__ = "1.0.0"

__all__ = ["__version__"]
