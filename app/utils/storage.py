"""Local-disk storage for a vault of notes and attachments."""

from __future__ import annotations

import shutil
from pathlib import Path
from typing import Iterator, List

from loguru import logger


def normalise_path(path: Path) -> Path:
    """Return a resolved version of ``path`` without forcing existence."""

    try:
        return path.expanduser().resolve()
    except FileNotFoundError:
        return path.expanduser().absolute()


class LocalStorage:
    """Vault rooted at a local directory, addressed by relative POSIX paths."""

    def __init__(self, root: Path) -> None:
        self.root = normalise_path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def absolute(self, path: str) -> Path:
        """Map a vault path to a filesystem path inside the root."""

        resolved = normalise_path(self.root / path)
        if resolved != self.root and self.root not in resolved.parents:
            raise ValueError(f"Path escapes vault: {path}")
        return resolved

    def relative(self, absolute: Path | str) -> str | None:
        """Map a filesystem path back to a vault path (None when outside)."""

        try:
            return normalise_path(Path(absolute)).relative_to(self.root).as_posix()
        except ValueError:
            return None

    def read(self, path: str) -> bytes:
        return self.absolute(path).read_bytes()

    def write(self, path: str, data: bytes) -> None:
        target = self.absolute(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)

    def move(self, path: str, new_path: str) -> None:
        source = self.absolute(path)
        target = self.absolute(new_path)
        if target.exists():
            raise FileExistsError(f"Destination already exists: {new_path}")
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.move(str(source), str(target))
        logger.debug(f"Moved {path} -> {new_path}")

    def delete(self, path: str) -> None:
        self.absolute(path).unlink()

    def exists(self, path: str) -> bool:
        return self.absolute(path).is_file()

    def list(self, folder: str) -> List[str]:
        """Files directly inside ``folder`` (vault paths, sorted)."""

        directory = self.absolute(folder)
        if not directory.is_dir():
            return []
        return sorted(
            child.relative_to(self.root).as_posix()
            for child in directory.iterdir()
            if child.is_file()
        )

    def size(self, path: str) -> int:
        return self.absolute(path).stat().st_size

    def walk(self) -> Iterator[str]:
        """Yield every file in the vault, skipping hidden directories."""

        for child in sorted(self.root.rglob("*")):
            relative = child.relative_to(self.root)
            if any(part.startswith(".") for part in relative.parts[:-1]):
                continue
            if child.is_file():
                yield relative.as_posix()
