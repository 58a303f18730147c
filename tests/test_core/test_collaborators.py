"""Tests for assetdelta.core.collaborators module."""

import sys

import pytest

from assetdelta.core.collaborators import (
    CodecDecoder,
    CommandCodecDecoder,
    CommandContainerDecoder,
    CommandExtractor,
    CommandRunner,
    ContainerDecoder,
    DecodeError,
    Extractor,
    render_command,
)

COPY_SCRIPT = (
    "import shutil, sys, pathlib; "
    "out = pathlib.Path(sys.argv[2]); "
    "shutil.copytree(sys.argv[1], out / 'unpacked', dirs_exist_ok=True)"
)


class TestRenderCommand:
    """Test placeholder substitution."""

    def test_substitutes_every_argument(self):
        """Test each argument is formatted."""
        args = render_command(["tool", "{input}", "--key={key}", "-o", "{output}"], input="a", output="b", key=7)
        assert args == ["tool", "a", "--key=7", "-o", "b"]

    def test_literal_arguments_kept(self):
        """Test arguments without placeholders pass through."""
        assert render_command(["tool", "--flag"]) == ["tool", "--flag"]


class TestCommandRunner:
    """Test CommandRunner."""

    def test_empty_template(self):
        """Test an empty template is rejected."""
        with pytest.raises(ValueError, match="cannot be empty"):
            CommandRunner([])

    def test_missing_command(self, temp_dir):
        """Test a missing executable becomes DecodeError."""
        runner = CommandRunner(["assetdelta-no-such-tool-xyz", "{input}"])
        with pytest.raises(DecodeError, match="Command not found") as exc_info:
            runner.run(temp_dir, input=temp_dir)
        assert exc_info.value.path == temp_dir

    def test_non_zero_exit(self, temp_dir):
        """Test the last stderr line is reported on failure."""
        script = "import sys; sys.stderr.write('first\\nbad input\\n'); sys.exit(3)"
        runner = CommandRunner([sys.executable, "-c", script])
        with pytest.raises(DecodeError, match="bad input"):
            runner.run(temp_dir / "x.acb")

    def test_timeout(self, temp_dir):
        """Test a hung command is killed."""
        runner = CommandRunner([sys.executable, "-c", "import time; time.sleep(5)"], timeout=0.2)
        with pytest.raises(DecodeError, match="timed out"):
            runner.run(temp_dir)

    def test_success(self, temp_dir):
        """Test a zero exit returns quietly."""
        CommandRunner([sys.executable, "-c", "pass"]).run(temp_dir)


class TestCommandImplementations:
    """Test the command-backed collaborators."""

    def test_protocols(self):
        """Test implementations satisfy their protocols."""
        assert isinstance(CommandExtractor(["x"]), Extractor)
        assert isinstance(CommandContainerDecoder(["x"]), ContainerDecoder)
        assert isinstance(CommandCodecDecoder(["x"]), CodecDecoder)

    def test_extractor_creates_output(self, temp_dir):
        """Test the extractor runs with input and output substituted."""
        source = temp_dir / "in"
        source.mkdir()
        (source / "bundle.bin").write_bytes(b"data")
        output = temp_dir / "out" / "nested"

        CommandExtractor([sys.executable, "-c", COPY_SCRIPT, "{input}", "{output}"]).extract(source, output)

        assert (output / "unpacked" / "bundle.bin").read_bytes() == b"data"

    def test_container_decoder_creates_output_dir(self, temp_dir):
        """Test the output directory exists before the command runs."""
        container = temp_dir / "voice.acb"
        container.write_bytes(b"acb")
        output = temp_dir / "voice"
        script = "import sys, pathlib; assert pathlib.Path(sys.argv[1]).is_dir()"

        CommandContainerDecoder([sys.executable, "-c", script, "{output}"]).extract(container, output)

        assert output.is_dir()

    def test_codec_decoder_output_path(self, temp_dir):
        """Test the decoded file path and key substitution."""
        encoded = temp_dir / "line_001.hca"
        encoded.write_bytes(b"hca")
        script = "import sys, pathlib; pathlib.Path(sys.argv[1]).write_text(sys.argv[2])"

        decoder = CommandCodecDecoder([sys.executable, "-c", script, "{output}", "{key}"])
        result = decoder.decode(encoded, 8910)

        assert result == temp_dir / "line_001.wav"
        assert result.read_text() == "8910"

    def test_codec_decoder_without_output(self, temp_dir):
        """Test a command that writes nothing is a failure."""
        encoded = temp_dir / "line_001.hca"
        encoded.write_bytes(b"hca")
        decoder = CommandCodecDecoder([sys.executable, "-c", "pass"])
        with pytest.raises(DecodeError, match="no output"):
            decoder.decode(encoded, 1)
