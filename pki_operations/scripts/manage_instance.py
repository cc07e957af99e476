#!/usr/bin/env python3
"""Build and publish the PKI artifacts of one VPN instance."""

import argparse
import os
import sys
from collections.abc import Sequence
from pathlib import Path

from pki_operations.lib.config import PKIConfig
from pki_operations.lib.errors import ConfigurationError, ExecutionError, PreconditionError
from pki_operations.lib.layout import check_path_component, ensure_layout, resolve_layout
from pki_operations.lib.logging_config import LOGGER
from pki_operations.lib.pipeline import ArtifactPipeline, check_client_name
from pki_operations.lib.toolkit import EasyRSAToolkit

ACTIONS = {
    "build-client": "Issue a client certificate for COMMON_NAME",
    "build-ca": "Initialize the certificate authority",
    "build-server": "Issue the server certificate",
    "build-dh": "Generate Diffie-Hellman parameters",
    "build-tls-auth": "Generate the TLS-auth HMAC key",
    "build-empty-crl": "Sign an empty certificate revocation list",
    "bootstrap": "clean-all, then build CA, server, DH and TLS-auth",
    "clean-all": "Reset the toolkit state (published files are kept)",
    "status": "Report the state of every artifact",
}


class UsageErrorParser(argparse.ArgumentParser):
    """ArgumentParser that exits with status 1 on usage errors."""

    def error(self, message: str):
        self.print_usage(sys.stderr)
        self.exit(1, f"{self.prog}: error: {message}\n")


def _name_argument(what: str):
    def parse(value: str) -> str:
        try:
            return check_path_component(value, what)
        except ValueError as e:
            raise argparse.ArgumentTypeError(str(e)) from e

    return parse


def build_parser() -> argparse.ArgumentParser:
    parser = UsageErrorParser(
        description="Build and publish PKI artifacts for a VPN instance"
    )
    parser.add_argument(
        "--root",
        type=Path,
        default=Path(os.environ.get("PKI_ROOT", ".")),
        help="Installation root holding easy-rsa/, vars/ and keys/ (default: $PKI_ROOT or .)",
    )
    parser.add_argument(
        "--publish-root",
        type=Path,
        default=Path(os.environ["PKI_PUBLISH_ROOT"]) if os.environ.get("PKI_PUBLISH_ROOT") else None,
        help="Publish root, must exist (default: $PKI_PUBLISH_ROOT or <root>/publish)",
    )
    parser.add_argument(
        "--vars-dir",
        type=_name_argument("parameter directory name"),
        default="vars",
        help="Name of the parameter directory under the root (default: vars)",
    )
    parser.add_argument(
        "--dh-key-size",
        type=int,
        default=2048,
        help="Key size used by the toolkit for DH parameters (default: 2048)",
    )
    parser.add_argument("instance", type=_name_argument("instance name"), help="Instance name")

    subparsers = parser.add_subparsers(dest="action", metavar="action", required=True)
    for action, help_text in ACTIONS.items():
        subparser = subparsers.add_parser(action, help=help_text, description=help_text)
        if action == "build-client":
            subparser.add_argument("common_name", help="Client certificate common name")

    return parser


def config_from_args(args: argparse.Namespace) -> PKIConfig:
    """Build the immutable configuration from parsed arguments."""
    install_root = args.root.resolve()
    publish_root = args.publish_root.resolve() if args.publish_root else install_root / "publish"
    return PKIConfig(
        install_root=install_root,
        publish_root=publish_root,
        vars_dirname=args.vars_dir,
        dh_key_size=args.dh_key_size,
    )


def run_action(pipeline: ArtifactPipeline, action: str, common_name: str | None = None) -> None:
    """Dispatch one action to the pipeline."""
    if action == "build-client":
        pipeline.build_client(common_name)
    elif action == "build-ca":
        pipeline.build_ca()
    elif action == "build-server":
        pipeline.build_server()
    elif action == "build-dh":
        pipeline.build_dh()
    elif action == "build-tls-auth":
        pipeline.build_tls_auth()
    elif action == "build-empty-crl":
        pipeline.build_empty_crl()
    elif action == "bootstrap":
        pipeline.bootstrap()
    elif action == "clean-all":
        pipeline.clean_all()
    elif action == "status":
        pipeline.status()
    else:
        raise ValueError(f"unknown action: {action}")


def main(argv: Sequence[str] | None = None) -> int:
    """Run one action for one instance.

    Returns:
        Exit code (0 for success, 1 for failure)
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.dh_key_size <= 0:
        parser.error("--dh-key-size must be positive")

    config = config_from_args(args)
    common_name = getattr(args, "common_name", None)
    if common_name is not None:
        try:
            check_client_name(common_name, config)
        except ValueError as e:
            parser.error(str(e))

    try:
        layout = ensure_layout(resolve_layout(config, args.instance))
        pipeline = ArtifactPipeline(config, layout, EasyRSAToolkit(config, layout))

        LOGGER.info("Running %s for instance %s", args.action, args.instance)
        run_action(pipeline, args.action, common_name)
        LOGGER.info("%s complete for instance %s", args.action, args.instance)
        return 0

    except ConfigurationError as e:
        LOGGER.error("Configuration error: %s", e)
        return 1
    except PreconditionError as e:
        LOGGER.error("Precondition failed: %s", e)
        return 1
    except ExecutionError as e:
        LOGGER.error("%s", e)
        LOGGER.error("Aborting.")
        return 1
    except Exception as e:
        LOGGER.error("%s failed: %s", args.action, e)
        LOGGER.error("Aborting.")
        return 1


if __name__ == "__main__":
    sys.exit(main())
