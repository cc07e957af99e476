"""Layout, artifact and result models for PKI operations."""

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

PUBLISH_SUBTREES = ("secret", "server", "shared", "clients")


@dataclass(frozen=True)
class InstanceLayout:
    """Resolved paths for one VPN instance.

    Built by the layout resolver; every component takes its paths from here
    instead of deriving them from the instance name again.
    """

    instance: str
    toolkit_dir: Path
    vars_file: Path
    work_dir: Path
    publish_dir: Path

    @property
    def secret_dir(self) -> Path:
        return self.publish_dir / "secret"

    @property
    def server_dir(self) -> Path:
        return self.publish_dir / "server"

    @property
    def shared_dir(self) -> Path:
        return self.publish_dir / "shared"

    @property
    def clients_dir(self) -> Path:
        return self.publish_dir / "clients"

    @property
    def publish_subtrees(self) -> tuple[Path, ...]:
        return tuple(self.publish_dir / name for name in PUBLISH_SUBTREES)

    def client_dir(self, common_name: str) -> Path:
        return self.clients_dir / common_name


@dataclass(frozen=True)
class CommandResult:
    """Outcome of one blocking external command.

    Output is stdout and stderr combined, kept for the error log.
    """

    argv: tuple[str, ...]
    returncode: int
    output: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class ArtifactKind(Enum):
    """Closed set of artifacts the pipeline knows how to build."""

    CA = "ca"
    SERVER = "server"
    DH = "dh"
    TLS_AUTH = "tls-auth"
    CRL = "crl"
    CLIENT = "client"


@dataclass(frozen=True)
class ArtifactSpec:
    """Declarative description of one artifact.

    Attributes:
        kind: Artifact kind
        label: Human readable name used in log lines
        sources: Working directory files that make up the artifact
        copies: (source, destination) pairs copied on every run
        command: Generation argv; ``${NAME}`` refers to a parameter variable
        requires: Files that must exist before generation may run
        extra_env: Variables forced into the command environment
        expected_env: Parameter values the generated files depend on
    """

    kind: ArtifactKind
    label: str
    sources: tuple[Path, ...]
    copies: tuple[tuple[Path, Path], ...]
    command: tuple[str, ...]
    requires: tuple[Path, ...] = ()
    extra_env: Mapping[str, str] = field(default_factory=dict)
    expected_env: Mapping[str, str] = field(default_factory=dict)


@dataclass
class ArtifactResult:
    """Result from building and publishing one artifact."""

    kind: ArtifactKind
    label: str
    generated: bool
    published: list[Path]


class ArtifactState(Enum):
    """Where an artifact is in its lifecycle."""

    ABSENT = "absent"
    GENERATED = "generated"
    PUBLISHED = "published"


@dataclass
class ArtifactStatus:
    """Status report entry for one artifact."""

    label: str
    state: ArtifactState
    certificate: dict[str, str] | None = None
