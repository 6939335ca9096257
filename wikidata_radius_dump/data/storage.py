"""
Per-job dump directories: the N-Triples stream, the Turtle file and the
metadata side-file.
"""

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from wikidata_radius_dump.utils.logging import get_logger
from wikidata_radius_dump.utils.errors import ValidationError


NT_FILE = "dump.nt"
TTL_FILE = "dump.ttl"
METADATA_FILE = "metadata.json"

OUTPUT_FORMATS = {"nt": NT_FILE, "ttl": TTL_FILE}


class TripleStreamWriter:
    """Append-only writer for the raw N-Triples stream of one job."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._file = None

    def open(self, truncate: bool = False) -> "TripleStreamWriter":
        self._file = open(self.path, 'w' if truncate else 'a', encoding='utf-8')
        return self

    def write(self, ntriples: str) -> None:
        """Append a query result verbatim, keeping it line terminated."""
        if not ntriples:
            return
        self._file.write(ntriples)
        if not ntriples.endswith("\n"):
            self._file.write("\n")
        self._file.flush()

    def close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None

    def __enter__(self):
        if self._file is None:
            self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


class DumpStorage:
    """Creates job directories and reads/writes their metadata."""

    def __init__(self, base_dir: str = "dumps"):
        self.base_dir = Path(base_dir)
        self.logger = get_logger(__name__)

    def create_job_dir(self, class_id: str, job_id: str,
                       now: Optional[datetime] = None) -> Path:
        """
        Create a fresh directory for a job.

        Named ``<UTC timestamp>_<classId>_<job id prefix>`` so concurrent jobs
        for the same class never share a directory.
        """
        now = now or datetime.now(timezone.utc)
        timestamp = now.strftime("%Y-%m-%dT%H-%M-%S")
        job_dir = self.base_dir / f"{timestamp}_{class_id}_{job_id[:8]}"
        job_dir.mkdir(parents=True, exist_ok=False)
        self.logger.info(f"Created dump directory {job_dir}")
        return job_dir

    @staticmethod
    def nt_path(job_dir: Path) -> Path:
        return Path(job_dir) / NT_FILE

    @staticmethod
    def ttl_path(job_dir: Path) -> Path:
        return Path(job_dir) / TTL_FILE

    @staticmethod
    def metadata_path(job_dir: Path) -> Path:
        return Path(job_dir) / METADATA_FILE

    def write_metadata(self, job_dir: Path, metadata: Dict[str, Any]) -> None:
        """Write metadata.json atomically (temp file, then rename)."""
        path = self.metadata_path(job_dir)
        temp_file = path.with_suffix('.tmp')
        with open(temp_file, 'w', encoding='utf-8') as f:
            json.dump(metadata, f, indent=2, ensure_ascii=False)
        temp_file.replace(path)
        self.logger.debug(f"Metadata saved to {path}")

    def read_metadata(self, job_dir: Path) -> Optional[Dict[str, Any]]:
        """Read metadata.json, or None when missing or unreadable."""
        path = self.metadata_path(job_dir)
        if not path.exists():
            return None
        try:
            with open(path, 'r', encoding='utf-8') as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            self.logger.warning(f"Failed to read metadata from {path}: {e}")
            return None

    def resolve_output(self, directory_name: str, fmt: str) -> Optional[Path]:
        """
        Locate an artifact of a finished dump by directory name.

        Returns:
            Path to the file, or None if it does not exist

        Raises:
            ValidationError: For an unknown format or a name escaping base_dir
        """
        if fmt not in OUTPUT_FORMATS:
            raise ValidationError('Invalid format. Use "nt" or "ttl"', {"format": fmt})

        job_dir = (self.base_dir / directory_name).resolve()
        if job_dir.parent != self.base_dir.resolve():
            raise ValidationError("Invalid dump directory", {"directory": directory_name})

        path = job_dir / OUTPUT_FORMATS[fmt]
        return path if path.exists() else None
