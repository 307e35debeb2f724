import sys
from pathlib import Path


# Ensure tests can import project packages regardless of how pytest is invoked.
ROOT = Path(__file__).resolve().parents[1]
ROOT_STR = str(ROOT)
if ROOT_STR not in sys.path:
    sys.path.insert(0, ROOT_STR)

import pytest

from engine.core import PipelineConfig


@pytest.fixture
def pipeline_config(tmp_path: Path) -> PipelineConfig:
    # Directories are left uncreated so tests can assert nothing was written.
    return PipelineConfig(
        downloads_dir=str(tmp_path / "downloads"),
        work_dir=str(tmp_path / "work"),
        thumbnail_timeout=2.0,
    )
