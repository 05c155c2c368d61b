"""Collision-free output names for binary assets."""

from __future__ import annotations

import hashlib
from pathlib import Path, PurePosixPath
from typing import Dict

from .models import AssetFile, ModulePath

SUFFIX_LENGTH = 8


class NameAllocator:
    """Hands out ``<stem>-<digest><ext>`` names, one per asset path.

    The digest covers the salt, the asset's project path and its content, so
    names are stable across builds of unchanged input.  A name is never
    handed to two different paths: on a (truncated) digest clash a counter
    is appended.
    """

    def __init__(self, root: Path, salt: str = "") -> None:
        self.root = root
        self.salt = salt
        self._by_path: Dict[ModulePath, AssetFile] = {}
        self._taken: Dict[str, ModulePath] = {}

    def __contains__(self, asset_path: ModulePath) -> bool:
        return asset_path in self._by_path

    def allocate(self, asset_path: ModulePath) -> AssetFile:
        """Return the asset record for *asset_path*, creating it on first use.

        Reads the file synchronously so allocation never yields control.
        """
        existing = self._by_path.get(asset_path)
        if existing is not None:
            return existing

        digest = hashlib.sha256()
        digest.update(self.salt.encode("utf-8"))
        digest.update(b"\0")
        digest.update(asset_path.encode("utf-8"))
        digest.update(b"\0")
        digest.update((self.root / asset_path).read_bytes())
        suffix = digest.hexdigest()[:SUFFIX_LENGTH]

        pure = PurePosixPath(asset_path)
        stem = pure.stem
        name = f"{stem}-{suffix}{pure.suffix}"
        counter = 1
        while name in self._taken:
            name = f"{stem}-{suffix}{counter}{pure.suffix}"
            counter += 1

        asset = AssetFile(asset_path=asset_path, unique_name=name)
        self._taken[name] = asset_path
        self._by_path[asset_path] = asset
        return asset
