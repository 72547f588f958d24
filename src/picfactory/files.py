"""Local file collaborator: output directories, mock outputs, deletion."""

from __future__ import annotations

import logging
import re
import shutil
import unicodedata
from collections.abc import Iterable
from pathlib import Path

logger = logging.getLogger(__name__)

_UNSAFE_FILENAME_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f]')
_WHITESPACE = re.compile(r"\s+")
_DASHES = re.compile(r"-+")
_PROMPT_DIR_MAX_CHARS = 80
_PLACEHOLDER_PNG = bytes.fromhex(
    "89504e470d0a1a0a0000000d49484452000000010000000108060000001f15c489"
    "0000000d49444154789c6360000002000001e221bc330000000049454e44ae426082",
)


def sanitize_filename(raw: str) -> str:
    """Filesystem-safe name that keeps unicode letters."""

    normalized = unicodedata.normalize("NFKD", raw)
    normalized = _UNSAFE_FILENAME_CHARS.sub("", normalized).strip()
    normalized = _DASHES.sub("-", _WHITESPACE.sub("-", normalized))
    return normalized or "item"


def build_task_output_dir(base_dir: Path, ref_name: str, prompt_text: str, task_id: str) -> Path:
    """Per-task directory derived from job inputs and task identity."""

    return (
        base_dir
        / sanitize_filename(ref_name)
        / sanitize_filename(prompt_text)[:_PROMPT_DIR_MAX_CHARS]
        / task_id
    )


class FileService:
    """Filesystem operations the scheduler and executors depend on."""

    def ensure_dir(self, path: Path) -> Path:
        path.mkdir(parents=True, exist_ok=True)
        return path

    def prepare_task_dir(self, path: Path) -> Path:
        """Fresh directory for a new attempt; replaces a previous attempt's partial output."""

        if path.exists():
            shutil.rmtree(path)
        return self.ensure_dir(path)

    def delete_files(self, paths: Iterable[Path]) -> None:
        """Best-effort delete; missing files are ignored."""

        for path in paths:
            try:
                Path(path).unlink()
            except FileNotFoundError:
                continue
            except OSError as error:
                logger.warning("Failed to delete output %s: %s", path, error)

    def save_mock_output(self, reference_path: Path, task_dir: Path) -> Path:
        """Write the degraded-mode output: a copy of the reference or a placeholder."""

        self.prepare_task_dir(task_dir)
        suffix = reference_path.suffix or ".png"
        output_path = task_dir / f"01-mock-output{suffix}"
        if reference_path.is_file():
            shutil.copyfile(reference_path, output_path)
        else:
            output_path = task_dir / "01-mock-output.png"
            output_path.write_bytes(_PLACEHOLDER_PNG)
        return output_path
