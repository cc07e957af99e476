"""PKI orchestration configuration dataclasses."""

from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class PKIConfig:
    """Installation layout and toolkit settings, built once at startup."""

    install_root: Path
    publish_root: Path
    toolkit_dirname: str = "easy-rsa"
    vars_dirname: str = "vars"
    keys_dirname: str = "keys"
    dh_key_size: int = 2048
    crl_validity_days: int = 3650
    server_name: str = "server"
    openvpn_binary: str = "openvpn"
    openssl_binary: str = "openssl"
    shell: str = "bash"

    @property
    def toolkit_dir(self) -> Path:
        """Root of the external easy-rsa toolkit."""
        return self.install_root / self.toolkit_dirname

    @property
    def vars_dir(self) -> Path:
        """Directory holding one parameter file per instance."""
        return self.install_root / self.vars_dirname

    @property
    def keys_dir(self) -> Path:
        """Parent of the per-instance working directories."""
        return self.install_root / self.keys_dirname

    @property
    def dh_filename(self) -> str:
        return f"dh{self.dh_key_size}.pem"
