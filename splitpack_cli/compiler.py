"""Compiler capability used by the builder and bundler.

The builder never transpiles code itself: it hands each rewritten module to
a :class:`Compiler`.  :class:`EsbuildCompiler` drives the ``esbuild``
executable as a child process; tests substitute a recording fake.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from . import config
from .errors import CompilationError
from .models import CompileResult

logger = logging.getLogger(__name__)


class Compiler(ABC):
    """Abstract interface over the external bundler/transpiler."""

    @abstractmethod
    async def compile_module(
        self,
        source: str,
        *,
        loader: str,
        outfile: Path,
        sourcefile: str,
        define: Optional[Dict[str, str]] = None,
    ) -> CompileResult:
        """Compile one module's (rewritten) source to *outfile*."""
        ...

    @abstractmethod
    async def bundle(
        self,
        entrypoint: Path,
        outfile: Path,
        *,
        platform: str = "browser",
        external_packages: bool = False,
        minify: bool = False,
        sourcemap: bool = False,
        extra_args: Sequence[str] = (),
    ) -> CompileResult:
        """Bundle *entrypoint* and everything it imports into *outfile*."""
        ...


def _messages(stderr: str) -> List[str]:
    return [line.rstrip() for line in stderr.splitlines() if line.strip()]


class EsbuildCompiler(Compiler):
    """Run ``esbuild`` for every compile/bundle request."""

    def __init__(self, executable: Optional[str] = None, cwd: Optional[Path] = None) -> None:
        self.executable = executable or config.ESBUILD_BIN
        self.cwd = cwd

    async def _run(
        self,
        args: List[str],
        target: str,
        outfile: Path,
        stdin: Optional[str] = None,
    ) -> CompileResult:
        logger.debug("esbuild %s", " ".join(args))
        try:
            proc = await asyncio.create_subprocess_exec(
                self.executable,
                *args,
                stdin=asyncio.subprocess.PIPE if stdin is not None else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(self.cwd) if self.cwd else None,
            )
        except FileNotFoundError as exc:
            raise CompilationError(
                target, [f"esbuild executable '{self.executable}' not found"]
            ) from exc

        _, stderr = await proc.communicate(stdin.encode("utf-8") if stdin is not None else None)
        messages = _messages(stderr.decode("utf-8", errors="replace"))
        if proc.returncode != 0:
            raise CompilationError(target, messages)
        return CompileResult(outfile=str(outfile), warnings=messages)

    async def compile_module(
        self,
        source: str,
        *,
        loader: str,
        outfile: Path,
        sourcefile: str,
        define: Optional[Dict[str, str]] = None,
    ) -> CompileResult:
        outfile.parent.mkdir(parents=True, exist_ok=True)
        args = [
            f"--loader={loader}",
            "--format=esm",
            "--log-level=warning",
            f"--sourcefile={sourcefile}",
            f"--outfile={outfile}",
        ]
        args.extend(define_args(define or {}))
        return await self._run(args, sourcefile, outfile, stdin=source)

    async def bundle(
        self,
        entrypoint: Path,
        outfile: Path,
        *,
        platform: str = "browser",
        external_packages: bool = False,
        minify: bool = False,
        sourcemap: bool = False,
        extra_args: Sequence[str] = (),
    ) -> CompileResult:
        outfile.parent.mkdir(parents=True, exist_ok=True)
        args = [
            str(entrypoint),
            "--bundle",
            "--format=esm",
            f"--platform={platform}",
            "--allow-overwrite",
            "--log-level=warning",
        ]
        if external_packages:
            args.append("--packages=external")
        if minify:
            args.append("--minify")
        if sourcemap:
            args.append("--sourcemap")
        args.extend(extra_args)
        args.append(f"--outfile={outfile}")
        return await self._run(args, str(entrypoint), outfile)


def define_args(define: Dict[str, str]) -> List[str]:
    """esbuild ``--define`` flags, one per replaced expression."""
    return [f"--define:{key}={value}" for key, value in sorted(define.items())]


def loader_for(module_path: str) -> str:
    """esbuild loader matching the module's extension."""
    suffix = Path(module_path).suffix
    return config.LOADERS.get(suffix, "js")


class DryRunCompiler(Compiler):
    """Accepts every request without writing output; records what was asked."""

    def __init__(self) -> None:
        self.modules: List[str] = []
        self.bundles: List[Path] = []

    async def compile_module(
        self,
        source: str,
        *,
        loader: str,
        outfile: Path,
        sourcefile: str,
        define: Optional[Dict[str, str]] = None,
    ) -> CompileResult:
        self.modules.append(sourcefile)
        return CompileResult(outfile=str(outfile))

    async def bundle(
        self,
        entrypoint: Path,
        outfile: Path,
        *,
        platform: str = "browser",
        external_packages: bool = False,
        minify: bool = False,
        sourcemap: bool = False,
        extra_args: Sequence[str] = (),
    ) -> CompileResult:
        self.bundles.append(entrypoint)
        return CompileResult(outfile=str(outfile))
