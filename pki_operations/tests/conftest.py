"""Test fixtures for pki_operations tests."""

import logging
import shutil
from collections.abc import Callable, Iterator, Mapping, Sequence
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

from pki_operations.lib.config import PKIConfig
from pki_operations.lib.layout import ensure_layout, resolve_layout
from pki_operations.lib.models import CommandResult, InstanceLayout
from pki_operations.lib.toolkit import check_parameters, expand_arguments

INSTANCE = "test-vpn"

VARS_CONTENT = """\
export EASY_RSA="`pwd`"
export KEY_CONFIG="$EASY_RSA/openssl-1.0.0.cnf"
export KEY_DIR="$EASY_RSA/keys"
export KEY_SIZE=2048
export KEY_COUNTRY="GB"
"""


class FakeToolkit:
    """Stand-in for EasyRSAToolkit that writes placeholder artifacts.

    Records every command it is asked to run. Steps named in fail_on exit 1
    without writing anything.
    """

    OUTPUTS = {
        "ca": ("ca.crt", "ca.key"),
        "server": ("server.crt", "server.key"),
        "dh": ("dh2048.pem",),
        "tls-auth": ("ta.key",),
        "crl": ("crl.pem",),
    }

    def __init__(self, layout: InstanceLayout, fail_on: Sequence[str] = ()) -> None:
        self.layout = layout
        self.fail_on = set(fail_on)
        self.calls: list[tuple[str, ...]] = []
        self.extra_envs: list[dict[str, str]] = []
        self.parameter_loads = 0

    def script(self, name: str) -> str:
        return str(self.layout.toolkit_dir / name)

    def load_parameters(self) -> dict[str, str]:
        self.parameter_loads += 1
        return {
            "KEY_DIR": str(self.layout.work_dir),
            "KEY_CONFIG": str(self.layout.toolkit_dir / "openssl-1.0.0.cnf"),
            "KEY_SIZE": "2048",
        }

    def run(self, argv: Sequence[str], env: Mapping[str, str]) -> CommandResult:
        argv = tuple(argv)
        self.calls.append(argv)
        step = self.step_name(argv)
        if step in self.fail_on:
            return CommandResult(argv=argv, returncode=1, output=f"{step} failed")

        work_dir = Path(env["KEY_DIR"])
        if step == "clean-all":
            shutil.rmtree(work_dir, ignore_errors=True)
            work_dir.mkdir(parents=True)
        else:
            if step in self.OUTPUTS:
                names = self.OUTPUTS[step]
            else:
                names = (f"{argv[-1]}.crt", f"{argv[-1]}.key")
            for name in names:
                (work_dir / name).write_text(f"{name} from {step}\n")
        return CommandResult(argv=argv, returncode=0, output="")

    def generate(
        self,
        command: Sequence[str],
        extra_env: Mapping[str, str] | None = None,
        expected_env: Mapping[str, str] | None = None,
    ) -> CommandResult:
        env = self.load_parameters()
        check_parameters(env, expected_env or {})
        self.extra_envs.append(dict(extra_env or {}))
        env.update(extra_env or {})
        return self.run(expand_arguments(command, env), env)

    @property
    def steps(self) -> list[str]:
        return [self.step_name(argv) for argv in self.calls]

    @staticmethod
    def step_name(argv: Sequence[str]) -> str:
        program = Path(argv[0]).name
        if program == "clean-all":
            return "clean-all"
        if program == "build-dh":
            return "dh"
        if "--initca" in argv:
            return "ca"
        if "--server" in argv:
            return "server"
        if "--genkey" in argv:
            return "tls-auth"
        if "-gencrl" in argv:
            return "crl"
        return "client"


@pytest.fixture
def pki_root(tmp_path: Path) -> Path:
    """Return an installation root with toolkit, parameter file and publish root.

    Creates:
        {tmp}/easy-rsa/
        {tmp}/vars/test-vpn
        {tmp}/publish/
    """
    (tmp_path / "easy-rsa").mkdir()
    (tmp_path / "vars").mkdir()
    (tmp_path / "vars" / INSTANCE).write_text(VARS_CONTENT)
    (tmp_path / "publish").mkdir()
    return tmp_path


@pytest.fixture
def pki_config(pki_root: Path) -> PKIConfig:
    return PKIConfig(install_root=pki_root, publish_root=pki_root / "publish")


@pytest.fixture
def instance_layout(pki_config: PKIConfig) -> InstanceLayout:
    """Return a resolved layout with all directories created."""
    return ensure_layout(resolve_layout(pki_config, INSTANCE))


@pytest.fixture
def fake_toolkit(instance_layout: InstanceLayout) -> FakeToolkit:
    return FakeToolkit(instance_layout)


@pytest.fixture
def fake_toolkit_factory() -> Callable[..., FakeToolkit]:
    """Return a factory with the EasyRSAToolkit constructor signature.

    The created toolkits are kept on ``factory.created``.
    """
    created: list[FakeToolkit] = []

    def factory(_config: PKIConfig, layout: InstanceLayout) -> FakeToolkit:
        toolkit = FakeToolkit(layout, fail_on=factory.fail_on)
        created.append(toolkit)
        return toolkit

    factory.created = created
    factory.fail_on = ()
    return factory


@pytest.fixture
def pki_logs(caplog: pytest.LogCaptureFixture) -> Iterator[pytest.LogCaptureFixture]:
    """Capture pki_operations log records (the logger does not propagate by default)."""
    logger = logging.getLogger("pki_operations")
    logger.propagate = True
    try:
        with caplog.at_level(logging.INFO, logger="pki_operations"):
            yield caplog
    finally:
        logger.propagate = False


@pytest.fixture
def ca_certificate_pem() -> bytes:
    """Return a self-signed PEM certificate with CN 'test-vpn CA' and serial 3A:F2:B1."""
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "test-vpn CA")])
    not_before = datetime.now(UTC)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(0x3AF2B1)
        .not_valid_before(not_before)
        .not_valid_after(not_before + timedelta(days=30))
        .sign(key, hashes.SHA256())
    )
    return cert.public_bytes(serialization.Encoding.PEM)
