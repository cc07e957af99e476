"""Adapter around the external easy-rsa toolkit and helper binaries."""

import os
import subprocess
from collections.abc import Mapping, Sequence
from string import Template

from .config import PKIConfig
from .errors import ConfigurationError, ExecutionError
from .logging_config import LOGGER
from .models import CommandResult, InstanceLayout

# Sourced with allexport so plain assignments in the file reach the environment too.
_LOAD_SCRIPT = 'set -a && . "$1" >/dev/null && env -0'


class EasyRSAToolkit:
    """Runs toolkit entry points for one instance.

    Parameters are loaded into a mapping and handed to each command as its
    environment; the orchestrator's own environment is never modified.
    """

    def __init__(self, config: PKIConfig, layout: InstanceLayout) -> None:
        """Initialize toolkit adapter.

        Args:
            config: Installation configuration (binaries, shell)
            layout: Resolved instance layout
        """
        self.config = config
        self.layout = layout

    def script(self, name: str) -> str:
        """Return the path of a toolkit entry point as a command argument."""
        return str(self.layout.toolkit_dir / name)

    def load_parameters(self) -> dict[str, str]:
        """Source the instance parameter file and return the resulting environment.

        The file is re-read on every call. ``KEY_DIR`` is always overridden
        with the instance working directory.

        Returns:
            Mapping of variable name to value

        Raises:
            ExecutionError: If the shell fails to source the file
        """
        vars_file = self.layout.vars_file
        LOGGER.info("Loading parameters from %s", vars_file)

        argv = [self.config.shell, "-c", _LOAD_SCRIPT, "load-parameters", str(vars_file)]
        try:
            completed = subprocess.run(
                argv,
                cwd=self.layout.toolkit_dir,
                env=dict(os.environ),
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                check=False,
            )
        except OSError as e:
            raise ExecutionError(f"cannot load parameters from {vars_file}: {e}") from e

        if completed.returncode != 0:
            stderr = completed.stderr.decode("utf-8", errors="replace").strip()
            raise ExecutionError(
                f"loading parameters from {vars_file} exited with {completed.returncode}: {stderr}"
            )

        env = parse_environment(completed.stdout)
        env["KEY_DIR"] = str(self.layout.work_dir)
        return env

    def run(self, argv: Sequence[str], env: Mapping[str, str]) -> CommandResult:
        """Run a command to completion and return its result.

        There is no timeout; a hung command hangs the run.

        Args:
            argv: Command and arguments
            env: Complete environment for the command

        Returns:
            CommandResult with exit status and combined output
        """
        argv = tuple(argv)
        LOGGER.info("Running %s", " ".join(argv))
        try:
            completed = subprocess.run(
                list(argv),
                cwd=self.layout.toolkit_dir,
                env=dict(env),
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                errors="replace",
                check=False,
            )
        except OSError as e:
            return CommandResult(argv=argv, returncode=127, output=str(e))

        return CommandResult(argv=argv, returncode=completed.returncode, output=completed.stdout or "")

    def generate(
        self,
        command: Sequence[str],
        extra_env: Mapping[str, str] | None = None,
        expected_env: Mapping[str, str] | None = None,
    ) -> CommandResult:
        """Load fresh parameters and run a generation command with them.

        Args:
            command: Argv template; ``${NAME}`` is substituted from the parameters
            extra_env: Variables forced into the environment after loading
            expected_env: Values the parameter file must set for the command's output names

        Returns:
            CommandResult of the generation command

        Raises:
            ConfigurationError: If the parameters disagree with expected_env
        """
        env = self.load_parameters()
        check_parameters(env, expected_env or {})
        if extra_env:
            env.update(extra_env)
        return self.run(expand_arguments(command, env), env)


def parse_environment(raw: bytes) -> dict[str, str]:
    """Parse NUL separated ``NAME=value`` records as printed by ``env -0``."""
    env: dict[str, str] = {}
    for record in raw.decode("utf-8", errors="surrogateescape").split("\0"):
        name, sep, value = record.partition("=")
        if sep and name:
            env[name] = value
    return env


def check_parameters(env: Mapping[str, str], expected: Mapping[str, str]) -> None:
    """Verify loaded parameters carry the values the orchestrator was configured with.

    Raises:
        ConfigurationError: Naming the parameter, the file's value and the configured one
    """
    for name, value in expected.items():
        if name not in env:
            raise ConfigurationError(
                f"parameter {name} is not set by the parameter file; {value} was configured"
            )
        if env[name] != value:
            raise ConfigurationError(
                f"parameter {name} is {env[name]} in the parameter file "
                f"but {value} was configured"
            )


def expand_arguments(command: Sequence[str], env: Mapping[str, str]) -> list[str]:
    """Substitute ``${NAME}`` references in each argument from env.

    Raises:
        ConfigurationError: If an argument references an unset parameter
    """
    expanded = []
    for arg in command:
        try:
            expanded.append(Template(arg).substitute(env))
        except KeyError as e:
            raise ConfigurationError(f"parameter {e.args[0]} is not set by the parameter file") from e
    return expanded
