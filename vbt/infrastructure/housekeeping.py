import os
import shutil
import logging
from pathlib import Path

SCRATCH_PREFIX = ".frames-"


class HousekeepingService:
    """Service for cleaning up leftovers of interrupted runs in the output tree."""

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def cleanup_temp_files(self, directory: Path):
        """Recursively removes all .tmp files (partial encodes) in the directory."""
        for root, dirs, files in os.walk(directory):
            for file in files:
                if file.endswith(".tmp"):
                    try:
                        (Path(root) / file).unlink()
                    except OSError as e:
                        self.logger.warning(f"HOUSEKEEPING: cannot remove {file}: {e}")

    def cleanup_scratch_dirs(self, directory: Path):
        """Recursively removes thumbnail scratch directories left by a killed run."""
        for root, dirs, files in os.walk(directory):
            stale = [d for d in dirs if d.startswith(SCRATCH_PREFIX)]
            for name in stale:
                dirs.remove(name)
                shutil.rmtree(Path(root) / name, ignore_errors=True)
