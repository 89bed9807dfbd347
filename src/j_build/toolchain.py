"""Default Compiler and ArtifactWriter collaborators: `javac` and a zipfile jar writer."""

from __future__ import annotations

import logging
import os
import subprocess
import zipfile
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Protocol

from j_build.exceptions import BuildIOError, CompileError


logger = logging.getLogger(__name__)

MANIFEST_PATH = "META-INF/MANIFEST.MF"


class Compiler(Protocol):
    def compile(
        self,
        source_files: Sequence[Path],
        classpath: Sequence[Path],
        source_version: str | None,
        target_version: str | None,
        output_dir: Path,
    ) -> None:
        """Compile `source_files` into `output_dir`.

        Raises:
            CompileError: If the compiler reports errors; `diagnostics` holds its output.
        """
        ...


class ArtifactWriter(Protocol):
    def package(
        self,
        output_dir: Path,
        manifest_attributes: Mapping[str, str],
        extra_entries: Mapping[str, Path],
        archive_path: Path,
    ) -> Path:
        """Write `output_dir` plus `extra_entries` (archive name -> file) into an archive."""
        ...


class JavacCompiler:
    """Runs the JDK's `javac` as a subprocess."""

    def __init__(self, executable: str = "javac", extra_args: Sequence[str] = ()) -> None:
        self.executable = executable
        self.extra_args = list(extra_args)

    def command(
        self,
        source_files: Sequence[Path],
        classpath: Sequence[Path],
        source_version: str | None,
        target_version: str | None,
        output_dir: Path,
    ) -> list[str]:
        args = [self.executable, *self.extra_args]
        if source_version:
            args += ["-source", source_version]
        if target_version:
            args += ["-target", target_version]
        args += ["-classpath", os.pathsep.join(str(p) for p in classpath), "-d", str(output_dir)]
        args += [str(p) for p in source_files]
        return args

    def compile(
        self,
        source_files: Sequence[Path],
        classpath: Sequence[Path],
        source_version: str | None,
        target_version: str | None,
        output_dir: Path,
    ) -> None:
        args = self.command(source_files, classpath, source_version, target_version, output_dir)
        logger.debug("Running %s", " ".join(args))
        try:
            proc = subprocess.run(args, capture_output=True, text=True, check=False)
        except OSError as exc:
            raise CompileError(f"Could not run {self.executable}: {exc}") from exc
        if proc.returncode != 0:
            raise CompileError(
                f"Compilation failed ({len(source_files)} source files into {output_dir})",
                diagnostics=(proc.stdout + proc.stderr).strip(),
            )
        if proc.stderr.strip():
            logger.info("%s", proc.stderr.strip())


def format_manifest(attributes: Mapping[str, str]) -> str:
    """Render manifest attributes, wrapping lines at 72 bytes as the jar format requires."""
    lines: list[str] = []
    for name, value in attributes.items():
        line = f"{name}: {value}"
        lines.append(line[:72])
        rest = line[72:]
        while rest:
            lines.append(" " + rest[:71])
            rest = rest[71:]
    return "\r\n".join(lines) + "\r\n\r\n"


def parse_manifest(text: str) -> dict[str, str]:
    """Return the main attributes of a manifest, joining continuation lines."""
    attributes: dict[str, str] = {}
    name = None
    for line in text.splitlines():
        if not line.strip():
            break
        if line.startswith(" ") and name is not None:
            attributes[name] += line[1:]
            continue
        name, sep, value = line.partition(":")
        if not sep:
            name = None
            continue
        name = name.strip()
        attributes[name] = value.strip()
    return attributes


class JarWriter:
    """Writes jar archives with the standard library's zipfile."""

    def package(
        self,
        output_dir: Path,
        manifest_attributes: Mapping[str, str],
        extra_entries: Mapping[str, Path],
        archive_path: Path,
    ) -> Path:
        try:
            archive_path.parent.mkdir(parents=True, exist_ok=True)
            with zipfile.ZipFile(archive_path, "w", compression=zipfile.ZIP_DEFLATED) as jar:
                # The manifest must be the first entry.
                jar.writestr(MANIFEST_PATH, format_manifest(manifest_attributes))
                seen = {MANIFEST_PATH}
                for path in sorted(output_dir.rglob("*")) if output_dir.is_dir() else []:
                    if not path.is_file():
                        continue
                    name = path.relative_to(output_dir).as_posix()
                    if name not in seen:
                        seen.add(name)
                        jar.write(path, name)
                for name, path in extra_entries.items():
                    if name not in seen:
                        seen.add(name)
                        jar.write(path, name)
        except OSError as exc:
            raise BuildIOError(f"Could not write {archive_path}: {exc}") from exc
        logger.debug("Wrote %s", archive_path)
        return archive_path
