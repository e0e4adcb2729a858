"""Exception hierarchy for graphbuild.

Everything that aborts configuration derives from ConfigurationError; the
CLI reports those with the offending input and exits non-zero without
leaving a partially configured build directory behind.
"""


class ConfigurationError(Exception):
    """Base class for fatal configuration errors."""

    pass


class ProjectConfigError(ConfigurationError):
    """Raised when the gbuild.ini project descriptor is missing or invalid."""

    pass


class UnknownProfileError(ConfigurationError):
    """Raised when the requested build profile is not recognized."""

    def __init__(self, profile: str):
        self.profile = profile
        super().__init__(f"Unknown build type: {profile}")


class InSourceBuildError(ConfigurationError):
    """Raised when configure is pointed at the project root itself."""

    def __init__(self, build_dir: str):
        self.build_dir = build_dir
        super().__init__(
            f"Run gbuild from a build subdirectory, not {build_dir} "
            '("mkdir build ; cd build ; gbuild configure ..").'
        )


class DependencyBootstrapError(ConfigurationError):
    """Raised when fetching or building an external dependency fails."""

    def __init__(self, dependency: str, step: str, detail: str = ""):
        self.dependency = dependency
        self.step = step
        message = f"{step} step failed for dependency {dependency}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class MissingSubTargetError(ConfigurationError):
    """Raised when a target links a sub-target that was never bootstrapped."""

    def __init__(self, target: str, sub_target: str):
        self.target = target
        self.sub_target = sub_target
        super().__init__(f"Target {target} links {sub_target}, which no bootstrapped dependency provides")


class GraphError(ConfigurationError):
    """Raised when the declared target graph is inconsistent (cycle, unknown dependency)."""

    pass


class BuildError(Exception):
    """Raised when a compile, archive or link step fails during gbuild build."""

    pass
