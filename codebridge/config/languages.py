"""
Language configuration for sandboxed runs.

Each language has a fixed source file name inside the workspace, the list of
artifacts a run may leave behind, the container image used by the docker
runtime, and the shell command that builds and runs the program from the
in-sandbox working directory.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple


@dataclass(frozen=True)
class LanguageConfig:
    """Configuration for a programming language run."""

    code: str  # Language tag accepted on the wire: "python", "cpp", ...
    name: str  # Full name
    source_file: str  # File the submitted code is written to
    artifacts: Tuple[str, ...]  # Files removed from the workspace after a run
    execution_command: str  # Shell command run in the sandbox working dir
    image_suffix: str = ""  # Defaults to the language tag
    environment: Dict[str, str] = field(default_factory=dict)

    @property
    def image(self) -> str:
        """Image name without the configured prefix."""
        return self.image_suffix or self.code


LANGUAGES: Dict[str, LanguageConfig] = {
    "python": LanguageConfig(
        code="python",
        name="Python",
        source_file="Main.py",
        artifacts=("Main.py",),
        execution_command="python3 -u Main.py",
        environment={"PYTHONUNBUFFERED": "1", "PYTHONDONTWRITEBYTECODE": "1"},
    ),
    "cpp": LanguageConfig(
        code="cpp",
        name="C++",
        source_file="Main.cpp",
        artifacts=("Main.cpp", "a.out"),
        execution_command="g++ -O2 -o a.out Main.cpp && ./a.out",
    ),
    "java": LanguageConfig(
        code="java",
        name="Java",
        source_file="Main.java",
        artifacts=("Main.java", "Main.class"),
        execution_command="javac Main.java && java -cp . Main",
        environment={"JAVA_TOOL_OPTIONS": "-Xmx256m"},
    ),
}


def normalize_language(code: Optional[str]) -> str:
    """Normalize a language tag as sent by clients ("Python" -> "python")."""
    return (code or "").lower().strip()


def get_language(code: str) -> Optional[LanguageConfig]:
    """Get language configuration by tag."""
    return LANGUAGES.get(normalize_language(code))


def get_supported_languages() -> List[str]:
    """Get list of known language tags."""
    return list(LANGUAGES.keys())


def is_supported_language(code: str) -> bool:
    """Check if a language tag is known."""
    return normalize_language(code) in LANGUAGES
