"""Decode stage: unpack audio containers and decode their members.

For every complete container under a category tree (segments are skipped;
they are merged first) the container is unpacked into a sibling directory
named after it, and the encoded members found there are decoded with a
numeric key. For the ``change`` category the counterpart container in
``change_old`` is decoded too, and decoded output identical to the old
release is discarded with the tree reconciler.
"""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path

import structlog

from assetdelta.core.collaborators import CodecDecoder, ContainerDecoder, DecodeError
from assetdelta.core.reconcile import TreeReconciler
from assetdelta.core.segments import is_segment_file

logger = structlog.get_logger()


@dataclass
class DecodeReport:
    """Outcome of a decode pass.

    Attributes:
        containers: Containers unpacked successfully
        decoded: Decoded output files
        deduplicated: Decoded files removed as identical to the old release
        failed: Path to error message for containers or members that failed
    """

    containers: list[Path] = field(default_factory=list)
    decoded: list[Path] = field(default_factory=list)
    deduplicated: int = 0
    failed: dict[str, str] = field(default_factory=dict)

    def merge(self, other: DecodeReport) -> None:
        self.containers.extend(other.containers)
        self.decoded.extend(other.decoded)
        self.deduplicated += other.deduplicated
        self.failed.update(other.failed)


class ContainerDecodePass:
    """Unpacks containers and decodes their encoded members.

    Args:
        container_decoder: Unpacks one container into a directory
        codec_decoder: Decodes one encoded member
        container_extension: Extension of containers to process
        encoded_extension: Extension of members to decode
        key: Numeric key handed to the codec decoder
        max_workers: Concurrent member decodes per container
        delete_containers: Delete a container after unpacking it
        delete_encoded: Delete an encoded member after decoding it
        reconciler: Used to discard decoded output identical to the old release
    """

    def __init__(
        self,
        container_decoder: ContainerDecoder,
        codec_decoder: CodecDecoder,
        container_extension: str = ".acb",
        encoded_extension: str = ".hca",
        key: int = 0x22CE,
        max_workers: int = 4,
        delete_containers: bool = True,
        delete_encoded: bool = True,
        reconciler: TreeReconciler | None = None,
    ):
        self.container_decoder = container_decoder
        self.codec_decoder = codec_decoder
        self.container_extension = container_extension.lower()
        self.encoded_extension = encoded_extension.lower()
        self.key = key
        self.max_workers = max_workers
        self.delete_containers = delete_containers
        self.delete_encoded = delete_encoded
        self.reconciler = reconciler or TreeReconciler()

    def find_containers(self, root: Path) -> list[Path]:
        """Complete containers under root, sorted."""
        if not root.is_dir():
            return []
        extensions = (self.container_extension,)
        return sorted(
            p
            for p in root.rglob("*")
            if p.is_file()
            and p.suffix.lower() == self.container_extension
            and not is_segment_file(p.name, extensions)
        )

    def decode_container(self, container: Path) -> DecodeReport:
        """Unpack one container and decode its members.

        The output directory sits beside the container and carries its
        name without extension.
        """
        report = DecodeReport()
        out_dir = container.with_suffix("")

        try:
            self.container_decoder.extract(container, out_dir)
        except DecodeError as e:
            logger.error("container_extract_failed", container=str(container), error=str(e))
            report.failed[str(container)] = str(e)
            return report
        report.containers.append(container)

        if self.delete_containers:
            try:
                container.unlink()
            except OSError as e:
                logger.warning("container_delete_failed", container=str(container), error=str(e))

        members = sorted(
            p for p in out_dir.iterdir() if p.is_file() and p.suffix.lower() == self.encoded_extension
        ) if out_dir.is_dir() else []

        lock = threading.Lock()

        def decode_member(member: Path) -> Path:
            decoded = self.codec_decoder.decode(member, self.key)
            if self.delete_encoded:
                member.unlink(missing_ok=True)
            return decoded

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            future_to_member = {executor.submit(decode_member, m): m for m in members}
            for future in as_completed(future_to_member):
                member = future_to_member[future]
                try:
                    decoded = future.result()
                except (DecodeError, OSError) as e:
                    logger.warning("member_decode_failed", member=str(member), error=str(e))
                    with lock:
                        report.failed[str(member)] = str(e)
                    continue
                with lock:
                    report.decoded.append(decoded)

        report.decoded.sort()
        logger.info(
            "container_decoded",
            container=container.name,
            members=len(members),
            decoded=len(report.decoded),
        )
        return report

    def decode_tree(self, root: Path) -> DecodeReport:
        """Decode every complete container under root."""
        report = DecodeReport()
        for container in self.find_containers(root):
            report.merge(self.decode_container(container))
        return report

    def decode_changed(self, change_root: Path, old_root: Path | None) -> DecodeReport:
        """Decode changed containers together with their old counterparts.

        After both sides of a pair are decoded, decoded files identical to
        the old release are removed from the changed side.
        """
        report = DecodeReport()
        for container in self.find_containers(change_root):
            relative = container.relative_to(change_root)
            report.merge(self.decode_container(container))

            old_container = old_root / relative if old_root is not None else None
            if old_container is None or not old_container.is_file():
                logger.debug("old_counterpart_missing", path=relative.as_posix())
                continue

            report.merge(self.decode_container(old_container))
            new_out = container.with_suffix("")
            old_out = old_container.with_suffix("")
            if new_out.is_dir() and old_out.is_dir():
                result = self.reconciler.reconcile(old_out, new_out)
                report.deduplicated += len(result.removed)
                removed = {new_out / p for p in result.removed}
                report.decoded = [p for p in report.decoded if p not in removed]
        return report

    def decode_version(self, version_dir: Path) -> DecodeReport:
        """Decode the ``new`` and ``change`` categories of a version tree."""
        report = DecodeReport()
        new_dir = version_dir / "new"
        if new_dir.is_dir():
            report.merge(self.decode_tree(new_dir))

        change_dir = version_dir / "change"
        old_dir = version_dir / "change_old"
        if change_dir.is_dir():
            report.merge(self.decode_changed(change_dir, old_dir if old_dir.is_dir() else None))

        logger.info(
            "decode_complete",
            version_dir=str(version_dir),
            containers=len(report.containers),
            decoded=len(report.decoded),
            deduplicated=report.deduplicated,
            failed=len(report.failed),
        )
        return report
