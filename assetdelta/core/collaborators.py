"""Interfaces to the external tools the pipeline delegates to.

Bundle extraction, container unpacking and audio decoding are file-format
work this package does not implement. Each is consumed through a small
protocol; the shipped implementations run a configured external command
with ``{input}``, ``{output}`` and ``{key}`` placeholders substituted.
"""

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Protocol, runtime_checkable

import structlog

logger = structlog.get_logger()


class DecodeError(Exception):
    """Raised when an external tool fails on one input.

    Attributes:
        path: Input file or directory that failed
    """

    def __init__(self, message: str, *, path: Path | None = None):
        self.path = path
        super().__init__(message)


@runtime_checkable
class Extractor(Protocol):
    """Turns a directory of raw bundle files into a tree of assets."""

    def extract(self, input_dir: Path, output_dir: Path) -> None:
        ...


@runtime_checkable
class ContainerDecoder(Protocol):
    """Unpacks one audio container into its encoded members."""

    def extract(self, container: Path, output_dir: Path) -> None:
        ...


@runtime_checkable
class CodecDecoder(Protocol):
    """Decodes one encoded audio file, returning the decoded file path."""

    def decode(self, encoded: Path, key: int) -> Path:
        ...


def render_command(template: list[str], **values: object) -> list[str]:
    """Substitute placeholders in every argument of a command template.

    Example:
        >>> render_command(["tool", "{input}", "-o", "{output}"], input="a", output="b")
        ['tool', 'a', '-o', 'b']
    """
    return [arg.format(**values) for arg in template]


class CommandRunner:
    """Runs a command template through subprocess.

    Args:
        template: Argument list with placeholders
        timeout: Seconds before the command is killed
    """

    def __init__(self, template: list[str], timeout: float = 600.0):
        if not template:
            raise ValueError("Command template cannot be empty")
        self.template = list(template)
        self.timeout = timeout

    def run(self, path: Path, **values: object) -> None:
        """Run the command for one input.

        Raises:
            DecodeError: If the command cannot start, times out or exits
                non-zero
        """
        args = render_command(self.template, **values)
        logger.debug("external_command", args=args)
        try:
            completed = subprocess.run(
                args,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=False,
            )
        except FileNotFoundError as e:
            raise DecodeError(f"Command not found: {args[0]}", path=path) from e
        except subprocess.TimeoutExpired as e:
            raise DecodeError(f"Command timed out after {self.timeout}s: {args[0]}", path=path) from e

        if completed.returncode != 0:
            stderr = (completed.stderr or "").strip().splitlines()
            detail = stderr[-1] if stderr else f"exit code {completed.returncode}"
            raise DecodeError(f"{args[0]} failed for {path.name}: {detail}", path=path)


class CommandExtractor:
    """Extractor backed by an external command."""

    def __init__(self, template: list[str], timeout: float = 600.0):
        self.runner = CommandRunner(template, timeout)

    def extract(self, input_dir: Path, output_dir: Path) -> None:
        output_dir.mkdir(parents=True, exist_ok=True)
        self.runner.run(input_dir, input=input_dir, output=output_dir)


class CommandContainerDecoder:
    """Container decoder backed by an external command."""

    def __init__(self, template: list[str], timeout: float = 600.0):
        self.runner = CommandRunner(template, timeout)

    def extract(self, container: Path, output_dir: Path) -> None:
        output_dir.mkdir(parents=True, exist_ok=True)
        self.runner.run(container, input=container, output=output_dir)


class CommandCodecDecoder:
    """Codec decoder backed by an external command.

    Args:
        template: Command template; ``{output}`` is the input path with
            ``suffix`` as its extension
        suffix: Extension of decoded files
        timeout: Seconds before the command is killed
    """

    def __init__(self, template: list[str], suffix: str = ".wav", timeout: float = 600.0):
        self.runner = CommandRunner(template, timeout)
        self.suffix = suffix

    def decode(self, encoded: Path, key: int) -> Path:
        output = encoded.with_suffix(self.suffix)
        self.runner.run(encoded, input=encoded, output=output, key=key)
        if not output.exists():
            raise DecodeError(f"Decoder produced no output for {encoded.name}", path=encoded)
        return output
