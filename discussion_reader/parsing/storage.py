from __future__ import annotations

import json
import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


@dataclass
class StoragePaths:
    root: Path

    def job_dir(self, job_id: str) -> Path:
        return self.root / "jobs" / str(job_id)

    def page_html_path(self, job_id: str) -> Path:
        return self.job_dir(job_id) / "page.html"

    def parse_output_path(self, job_id: str) -> Path:
        return self.job_dir(job_id) / "parse_output.json"


class LocalPageStorage:
    """
    Manages filesystem layout for submitted page markup and parse outputs.
    """

    def __init__(self, storage_paths: StoragePaths):
        self.paths = storage_paths

    def ensure_base_dirs(self, job_id: str) -> None:
        self.paths.job_dir(job_id).mkdir(parents=True, exist_ok=True)

    def save_page_html(self, job_id: str, html: str) -> Path:
        self.ensure_base_dirs(job_id)
        target = self.paths.page_html_path(job_id)
        target.write_text(html, encoding="utf-8")
        return target

    def read_page_html(self, job_id: str) -> str:
        path = self.paths.page_html_path(job_id)
        if not path.exists():
            raise FileNotFoundError(f"Page markup not found at {path}")
        # Undecodable bytes stay in the text as replacement characters.
        return path.read_text(encoding="utf-8", errors="replace")

    def write_parse_output(self, job_id: str, message: Dict[str, Any]) -> Path:
        self.ensure_base_dirs(job_id)
        target = self.paths.parse_output_path(job_id)
        with target.open("w", encoding="utf-8") as f:
            json.dump(message, f, ensure_ascii=False, indent=2)
        return target

    def read_parse_output(self, job_id: str) -> Optional[Dict[str, Any]]:
        path = self.paths.parse_output_path(job_id)
        if not path.exists():
            return None
        with path.open("r", encoding="utf-8") as f:
            return json.load(f)

    def delete_job(self, job_id: str) -> None:
        job_dir = self.paths.job_dir(job_id)
        if job_dir.exists():
            shutil.rmtree(job_dir)
            logger.info("Removed stored files for job %s", job_id)
