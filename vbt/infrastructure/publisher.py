"""Publish backends and object key derivation.

Both backends expose ``publish(local_path, bucket, key) -> str`` and raise
PublishError on failure. The S3 backend pushes through boto3's managed
transfer; the mirror backend copies into a local directory tree laid out the
way the bucket would be.
"""

import re
import hashlib
import unicodedata
import shutil
import logging
import threading
from pathlib import Path
from typing import Optional

import boto3
from boto3.exceptions import S3UploadFailedError
from botocore.exceptions import BotoCoreError, ClientError

from vbt.config.models import PublishConfig
from vbt.domain.events import PublishProgress
from vbt.domain.models import PublishError
from vbt.infrastructure.event_bus import EventBus

KEY_DIR_DEPTH = 3
SEGMENT_DIGEST_CHARS = 8


def slugify(text: str, separator: str = "_") -> str:
    # Fold accents onto their base letters; other non-ASCII characters are dropped
    folded = "".join(
        c for c in unicodedata.normalize("NFKD", text or "") if unicodedata.category(c) != "Mn"
    )
    s = folded.strip().lower()
    s = re.sub(r"[^a-z0-9]+", separator, s)
    return s.strip(separator)


def _key_segment(part: str) -> str:
    """Slug of one path segment, or a short digest when nothing ASCII survives."""
    return slugify(part) or hashlib.md5(part.encode("utf-8")).hexdigest()[:SEGMENT_DIGEST_CHARS]


def make_object_key(output_path: Path, output_root: Path) -> str:
    """Deterministic key for an output file.

    ``<dir1>/<dir2>/<dir3>/<basename>-<md5><ext>`` where directory segments
    (first three, relative to output_root) and the basename are slugified and
    the md5 is taken over the joined directory slugs plus the raw basename.
    A segment with nothing left after slugifying is replaced by a short md5 of
    its raw text, so no key has an empty segment.
    """
    try:
        rel_path = Path(output_path).relative_to(output_root)
    except ValueError:
        rel_path = Path(Path(output_path).name)

    ext = rel_path.suffix
    basename = rel_path.stem
    dirname = "/".join(_key_segment(part) for part in rel_path.parent.parts[:KEY_DIR_DEPTH])
    checksum = hashlib.md5(f"{dirname}{basename}".encode("utf-8")).hexdigest()
    name = f"{_key_segment(basename)}-{checksum}{ext}"
    return f"{dirname}/{name}" if dirname else name


class S3Publisher:
    """Uploads files to S3 with boto3 managed transfers."""

    def __init__(self, config: PublishConfig, event_bus: Optional[EventBus] = None, client=None):
        self.event_bus = event_bus
        self.logger = logging.getLogger(__name__)
        self.client = client or boto3.client(
            "s3",
            aws_access_key_id=config.s3_key,
            aws_secret_access_key=config.s3_secret,
            region_name=config.s3_region,
            endpoint_url=config.s3_endpoint_url,
        )

    def _progress_callback(self, local_path: Path, key: str):
        total = local_path.stat().st_size
        sent = 0
        lock = threading.Lock()

        def callback(bytes_amount: int):
            nonlocal sent
            with lock:
                sent += bytes_amount
                current = sent
            self.logger.debug(f"PUBLISH_PROGRESS: {key} {current}/{total}")
            if self.event_bus:
                self.event_bus.publish(PublishProgress(path=local_path, key=key, bytes_sent=current, bytes_total=total))

        return callback

    def publish(self, local_path: Path, bucket: str, key: str) -> str:
        try:
            callback = self._progress_callback(local_path, key)
            self.client.upload_file(str(local_path), bucket, key, Callback=callback)
        except (BotoCoreError, ClientError, S3UploadFailedError, OSError) as e:
            raise PublishError(f"Upload failed for {local_path} to s3://{bucket}/{key}: {e}") from e
        self.logger.info(f"PUBLISH_END: s3://{bucket}/{key}")
        return f"s3://{bucket}/{key}"


class MirrorPublisher:
    """Copies files into a local directory tree keyed like the bucket."""

    def __init__(self, mirror_root: Path):
        self.mirror_root = Path(mirror_root)
        self.logger = logging.getLogger(__name__)

    def destination(self, bucket: str, key: str) -> Path:
        root = self.mirror_root / bucket if bucket else self.mirror_root
        return root / key

    def publish(self, local_path: Path, bucket: str, key: str) -> str:
        dest = self.destination(bucket, key)
        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(local_path, dest)
        except OSError as e:
            raise PublishError(f"Mirror copy failed for {local_path} to {dest}: {e}") from e
        self.logger.info(f"PUBLISH_END: {dest}")
        return str(dest)


def build_publisher(config: PublishConfig, event_bus: Optional[EventBus] = None):
    """Returns the backend selected by config, or None when publishing is off."""
    if config.s3_upload:
        return S3Publisher(config, event_bus=event_bus)
    if config.fake_upload:
        return MirrorPublisher(config.mirror_root)
    return None
