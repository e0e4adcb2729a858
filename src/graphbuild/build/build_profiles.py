"""Build Profile Configuration.

This module maps a named build profile to the compiler flags, preprocessor
definitions and linker flags every target inherits.

Design:
    A profile is resolved exactly once per configure run into an immutable
    BuildConfiguration. The graph builder attaches it to the compiled object
    set as public (inheritable) options, so every target declared afterwards
    picks it up; nothing mutates the flag lists after resolution.

    Recognized profiles (case-insensitive, default debug):
        debug           -ggdb -O0, frame pointers, no sibling calls, --coverage
        fastdebug       -ggdb -O1, frame pointers, no sibling calls
        release         -O3, NDEBUG
        relwithdebinfo  -ggdb -O2, NDEBUG
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from ..exceptions import UnknownProfileError

COVERAGE_FLAG = "--coverage"


class BuildProfile(Enum):
    """Build profile enum for type-safe profile selection."""

    DEBUG = "debug"
    FASTDEBUG = "fastdebug"
    RELEASE = "release"
    RELWITHDEBINFO = "relwithdebinfo"

    def __str__(self) -> str:
        """Return the string value for directory names and display."""
        return self.value


DEFAULT_PROFILE = BuildProfile.DEBUG


@dataclass(frozen=True)
class BuildConfiguration:
    """Resolved flags of a build profile.

    Attributes:
        profile: Profile identifier
        compile_flags: Compiler flags, in command-line order
        definitions: Preprocessor definitions without the -D prefix
        link_flags: Linker flags, in command-line order
    """

    profile: BuildProfile
    compile_flags: tuple[str, ...]
    definitions: tuple[str, ...]
    link_flags: tuple[str, ...]

    @property
    def name(self) -> str:
        return self.profile.value

    @property
    def define_flags(self) -> tuple[str, ...]:
        """Definitions rendered as -D flags."""
        return tuple(f"-D{d}" for d in self.definitions)

    @property
    def has_coverage(self) -> bool:
        return COVERAGE_FLAG in self.compile_flags

    @property
    def has_debug_symbols(self) -> bool:
        return any(flag.startswith("-g") for flag in self.compile_flags)


_FRAME_FLAGS = ("-fno-omit-frame-pointer", "-fno-optimize-sibling-calls")

# Profile configurations - keyed by BuildProfile enum
PROFILES: dict[BuildProfile, BuildConfiguration] = {
    BuildProfile.DEBUG: BuildConfiguration(
        profile=BuildProfile.DEBUG,
        compile_flags=("-ggdb", "-O0") + _FRAME_FLAGS + (COVERAGE_FLAG,),
        definitions=(),
        link_flags=(COVERAGE_FLAG,),
    ),
    BuildProfile.FASTDEBUG: BuildConfiguration(
        profile=BuildProfile.FASTDEBUG,
        compile_flags=("-ggdb", "-O1") + _FRAME_FLAGS,
        definitions=(),
        link_flags=(),
    ),
    BuildProfile.RELEASE: BuildConfiguration(
        profile=BuildProfile.RELEASE,
        compile_flags=("-O3",),
        definitions=("NDEBUG",),
        link_flags=(),
    ),
    BuildProfile.RELWITHDEBINFO: BuildConfiguration(
        profile=BuildProfile.RELWITHDEBINFO,
        compile_flags=("-ggdb", "-O2"),
        definitions=("NDEBUG",),
        link_flags=(),
    ),
}


def parse_profile(name: Optional[str]) -> BuildProfile:
    """Normalize a user-supplied profile name to a BuildProfile.

    Args:
        name: Profile name in any case; None or blank selects the default

    Returns:
        The matching BuildProfile

    Raises:
        UnknownProfileError: If the name matches no profile
    """
    if name is None or not name.strip():
        return DEFAULT_PROFILE
    canonical = name.strip().lower()
    try:
        return BuildProfile(canonical)
    except ValueError:
        raise UnknownProfileError(name.strip().upper()) from None


def get_profile(profile: BuildProfile) -> BuildConfiguration:
    """Get profile configuration by enum."""
    return PROFILES[profile]


def resolve_profile(name: Optional[str]) -> BuildConfiguration:
    """Resolve a profile name straight to its BuildConfiguration.

    Raises:
        UnknownProfileError: If the name matches no profile
    """
    return get_profile(parse_profile(name))


def format_profile_banner(config: BuildConfiguration, compiler: Optional[str] = None) -> str:
    """Format a build profile banner for display.

    Args:
        config: Resolved build configuration
        compiler: Compiler name and version (optional)

    Returns:
        Formatted banner string
    """
    parts = [f"PROFILE={config.name}"]
    if compiler:
        parts.append(f"COMPILER={compiler}")

    return " ".join(parts)
