import os
import logging
from pathlib import Path
from typing import Iterable, List, Optional
from vbt.domain.models import DiscoveryError

class FileScanner:
    """Recursively scans for media files in a directory."""

    def __init__(self, extensions: List[str], exclude_dirs: Optional[Iterable[Path]] = None):
        self.extensions = [(ext if ext.startswith(".") else f".{ext}").lower() for ext in extensions]
        self.exclude_dirs = {Path(d).absolute() for d in (exclude_dirs or [])}
        self.logger = logging.getLogger(__name__)

    def _on_walk_error(self, error: OSError):
        self.logger.warning(f"DISCOVERY_SKIP: cannot read {error.filename}: {error.strerror}")

    def scan(self, root_dir: Path) -> List[Path]:
        """Returns absolute paths of all matching, non-hidden files under root_dir.

        Raises DiscoveryError when root_dir itself cannot be read.
        """
        root_dir = Path(root_dir).absolute()
        if not root_dir.is_dir():
            raise DiscoveryError(f"Input directory does not exist or is not a directory: {root_dir}")
        try:
            with os.scandir(root_dir):
                pass
        except OSError as e:
            raise DiscoveryError(f"Cannot read input directory {root_dir}: {e}") from e

        found: List[Path] = []
        for root, dirs, files in os.walk(str(root_dir), onerror=self._on_walk_error):
            root_path = Path(root)

            # Skip hidden directories and the output tree; sort for stable logs
            dirs[:] = sorted(
                d for d in dirs
                if not d.startswith(".") and (root_path / d) not in self.exclude_dirs
            )

            for file_name in sorted(files):
                if file_name.startswith("."):
                    continue
                file_path = root_path / file_name
                if file_path.suffix.lower() not in self.extensions:
                    continue
                found.append(file_path)

        return found
