"""Idempotent artifact pipeline: generate-or-skip, then publish."""

import filecmp
import shutil
from pathlib import Path

from .cert_utils import read_certificate_metadata
from .config import PKIConfig
from .errors import ExecutionError, PreconditionError
from .layout import check_path_component, ensure_directory
from .logging_config import LOGGER
from .models import (
    ArtifactKind,
    ArtifactResult,
    ArtifactSpec,
    ArtifactState,
    ArtifactStatus,
    CommandResult,
    InstanceLayout,
)
from .toolkit import EasyRSAToolkit

BOOTSTRAP_ORDER = (
    ArtifactKind.CA,
    ArtifactKind.SERVER,
    ArtifactKind.DH,
    ArtifactKind.TLS_AUTH,
)

# easy-rsa's openssl.cnf reads these; `openssl ca -gencrl` fails if they are unset.
CRL_ENV = {"KEY_CN": "", "KEY_OU": "", "KEY_NAME": "", "KEY_ALTNAMES": ""}


CA_STEM = "ca"
TLS_AUTH_STEM = "ta"


def reserved_client_names(config: PKIConfig) -> frozenset[str]:
    """Return file stems of the working directory's .crt/.key artifacts.

    A client's files are ``<cn>.crt`` and ``<cn>.key``; these stems would
    overwrite another artifact.
    """
    return frozenset((CA_STEM, TLS_AUTH_STEM, config.server_name))


def _literal(value: Path | str) -> str:
    """Escape a literal command argument against ${NAME} substitution."""
    return str(value).replace("$", "$$")


def check_client_name(common_name: str, config: PKIConfig) -> str:
    """Validate a client common name.

    The name becomes both a working directory file stem and a publish
    directory, so it must be a single path component and must not collide
    with the CA, server or TLS-auth files.

    Raises:
        ValueError: If the name is unusable
    """
    check_path_component(common_name, "common name")
    if common_name in reserved_client_names(config):
        raise ValueError(f"common name {common_name!r} is reserved")
    return common_name


def copy_artifact(source: Path, destination: Path) -> Path:
    """Copy source over destination as a regular file.

    A symlink at the destination is removed first so the copy never writes
    through it.

    Raises:
        ExecutionError: If the source is missing or the destination is not writable
    """
    LOGGER.info("Copying %s to %s", source, destination)
    try:
        if destination.is_symlink():
            destination.unlink()
        shutil.copyfile(source, destination)
    except OSError as e:
        raise ExecutionError(f"cannot copy {source} to {destination}: {e}") from e
    return destination


class ArtifactPipeline:
    """Builds and publishes the artifacts of one VPN instance."""

    def __init__(
        self, config: PKIConfig, layout: InstanceLayout, toolkit: EasyRSAToolkit
    ) -> None:
        """Initialize pipeline.

        Args:
            config: Installation configuration
            layout: Resolved and created instance layout
            toolkit: Toolkit adapter used for parameter loading and commands
        """
        self.config = config
        self.layout = layout
        self.toolkit = toolkit

    def artifact_spec(self, kind: ArtifactKind, common_name: str | None = None) -> ArtifactSpec:
        """Describe the files, destinations and command for an artifact kind.

        Args:
            kind: Artifact kind
            common_name: Client common name, required for ArtifactKind.CLIENT

        Returns:
            ArtifactSpec for the instance layout
        """
        work = self.layout.work_dir
        pkitool = _literal(self.toolkit.script("pkitool"))

        if kind is ArtifactKind.CA:
            cert, key = work / f"{CA_STEM}.crt", work / f"{CA_STEM}.key"
            return ArtifactSpec(
                kind=kind,
                label="CA",
                sources=(cert, key),
                copies=(
                    (cert, self.layout.shared_dir / cert.name),
                    (key, self.layout.secret_dir / key.name),
                ),
                command=(pkitool, "--initca"),
            )

        if kind is ArtifactKind.SERVER:
            name = self.config.server_name
            cert, key = work / f"{name}.crt", work / f"{name}.key"
            return ArtifactSpec(
                kind=kind,
                label="server certificate",
                sources=(cert, key),
                copies=(
                    (cert, self.layout.server_dir / cert.name),
                    (key, self.layout.server_dir / key.name),
                ),
                command=(pkitool, "--server", _literal(name)),
            )

        if kind is ArtifactKind.DH:
            params = work / self.config.dh_filename
            return ArtifactSpec(
                kind=kind,
                label="DH parameters",
                sources=(params,),
                copies=((params, self.layout.server_dir / params.name),),
                command=(_literal(self.toolkit.script("build-dh")),),
                expected_env={"KEY_SIZE": str(self.config.dh_key_size)},
            )

        if kind is ArtifactKind.TLS_AUTH:
            secret = work / f"{TLS_AUTH_STEM}.key"
            return ArtifactSpec(
                kind=kind,
                label="TLS-auth key",
                sources=(secret,),
                copies=((secret, self.layout.shared_dir / secret.name),),
                command=(
                    _literal(self.config.openvpn_binary),
                    "--genkey",
                    "--secret",
                    _literal(secret),
                ),
            )

        if kind is ArtifactKind.CRL:
            crl = work / "crl.pem"
            ca_cert, ca_key = work / f"{CA_STEM}.crt", work / f"{CA_STEM}.key"
            return ArtifactSpec(
                kind=kind,
                label="CRL",
                sources=(crl,),
                copies=((crl, self.layout.server_dir / crl.name),),
                command=(
                    _literal(self.config.openssl_binary),
                    "ca",
                    "-gencrl",
                    "-keyfile",
                    _literal(ca_key),
                    "-cert",
                    _literal(ca_cert),
                    "-out",
                    _literal(crl),
                    "-config",
                    "${KEY_CONFIG}",
                    "-crldays",
                    str(self.config.crl_validity_days),
                ),
                requires=(ca_cert, ca_key),
                extra_env=CRL_ENV,
            )

        if kind is ArtifactKind.CLIENT:
            if common_name is None:
                raise ValueError("client artifact requires a common name")
            check_client_name(common_name, self.config)
            cert, key = work / f"{common_name}.crt", work / f"{common_name}.key"
            client_dir = self.layout.client_dir(common_name)
            return ArtifactSpec(
                kind=kind,
                label=f"client certificate {common_name}",
                sources=(cert, key),
                copies=(
                    (cert, client_dir / "client.crt"),
                    (key, client_dir / "client.key"),
                ),
                command=(pkitool, _literal(common_name)),
            )

        raise ValueError(f"unknown artifact kind: {kind}")

    def build(self, kind: ArtifactKind, common_name: str | None = None) -> ArtifactResult:
        """Generate an artifact if absent, then publish it.

        Returns:
            ArtifactResult telling whether generation ran and what was published
        """
        spec = self.artifact_spec(kind, common_name)
        generated = self._generate_or_skip(spec)
        published = self._publish(spec)
        return ArtifactResult(
            kind=kind, label=spec.label, generated=generated, published=published
        )

    def build_ca(self) -> ArtifactResult:
        return self.build(ArtifactKind.CA)

    def build_server(self) -> ArtifactResult:
        return self.build(ArtifactKind.SERVER)

    def build_dh(self) -> ArtifactResult:
        return self.build(ArtifactKind.DH)

    def build_tls_auth(self) -> ArtifactResult:
        return self.build(ArtifactKind.TLS_AUTH)

    def build_empty_crl(self) -> ArtifactResult:
        return self.build(ArtifactKind.CRL)

    def build_client(self, common_name: str) -> ArtifactResult:
        return self.build(ArtifactKind.CLIENT, common_name)

    def clean_all(self) -> None:
        """Reset the toolkit state for the instance.

        Only the working directory is reset; published files stay where they are.
        """
        env = self.toolkit.load_parameters()
        result = self.toolkit.run([self.toolkit.script("clean-all")], env)
        self._require_success(result, "clean-all")
        LOGGER.info("Publish tree %s left untouched", self.layout.publish_dir)

    def bootstrap(self) -> list[ArtifactResult]:
        """Reset the instance, then build CA, server, DH and TLS-auth in order.

        Stops at the first failure; artifacts published before it stay published.
        """
        self.clean_all()
        ensure_directory(self.layout.work_dir)
        return [self.build(kind) for kind in BOOTSTRAP_ORDER]

    def status(self) -> list[ArtifactStatus]:
        """Report the lifecycle state of every known artifact without changing anything."""
        specs = [self.artifact_spec(kind) for kind in ArtifactKind if kind is not ArtifactKind.CLIENT]
        specs.extend(self.artifact_spec(ArtifactKind.CLIENT, cn) for cn in self.known_clients())
        return [self._artifact_status(spec) for spec in specs]

    def known_clients(self) -> list[str]:
        """Return client names found in the working directory or publish tree."""
        names = set()
        reserved = reserved_client_names(self.config)
        if self.layout.work_dir.is_dir():
            names.update(
                path.stem for path in self.layout.work_dir.glob("*.crt") if path.stem not in reserved
            )
        if self.layout.clients_dir.is_dir():
            names.update(path.name for path in self.layout.clients_dir.iterdir() if path.is_dir())
        valid = []
        for name in sorted(names):
            try:
                valid.append(check_client_name(name, self.config))
            except ValueError:
                LOGGER.warning("Ignoring unusable client name %r", name)
        return valid

    def _generate_or_skip(self, spec: ArtifactSpec) -> bool:
        if all(path.is_file() for path in spec.sources):
            LOGGER.info("%s already present, skipping generation", spec.label)
            return False

        missing = [str(path) for path in spec.requires if not path.is_file()]
        if missing:
            raise PreconditionError(
                f"{spec.label} requires {', '.join(missing)}; build the CA first"
            )

        LOGGER.info("Generating %s", spec.label)
        result = self.toolkit.generate(spec.command, spec.extra_env, spec.expected_env)
        self._require_success(result, spec.label)
        return True

    def _publish(self, spec: ArtifactSpec) -> list[Path]:
        published = []
        for source, destination in spec.copies:
            ensure_directory(destination.parent)
            published.append(copy_artifact(source, destination))
        LOGGER.info("Published %s", spec.label)
        return published

    def _artifact_status(self, spec: ArtifactSpec) -> ArtifactStatus:
        if not all(path.is_file() for path in spec.sources):
            state = ArtifactState.ABSENT
        elif all(
            destination.is_file() and filecmp.cmp(source, destination, shallow=False)
            for source, destination in spec.copies
        ):
            state = ArtifactState.PUBLISHED
        else:
            state = ArtifactState.GENERATED

        certificate = None
        cert_path = spec.sources[0]
        if state is not ArtifactState.ABSENT and cert_path.suffix == ".crt":
            try:
                certificate = read_certificate_metadata(cert_path)
            except (OSError, ValueError) as e:
                LOGGER.warning("Cannot read certificate %s: %s", cert_path, e)

        if certificate:
            LOGGER.info(
                "%s: %s (CN=%s serial=%s expires=%s)",
                spec.label,
                state.value,
                certificate["commonName"],
                certificate["serialNumber"],
                certificate["expiry"],
            )
        else:
            LOGGER.info("%s: %s", spec.label, state.value)
        return ArtifactStatus(label=spec.label, state=state, certificate=certificate)

    @staticmethod
    def _require_success(result: CommandResult, label: str) -> None:
        if result.ok:
            return
        LOGGER.error("%s: %s exited with status %d", label, " ".join(result.argv), result.returncode)
        if result.output:
            LOGGER.error("Command output:\n%s", result.output.rstrip())
        raise ExecutionError(f"{label} failed with exit status {result.returncode}")
