"""
Self-deploy artifact.

The master runs the fan-out with the same gitdeploy version as the operator:
the package is bundled into a versioned zipapp, uploaded to the module root
and executed there with the remote interpreter.
"""

import shutil
import tempfile
import zipapp
from pathlib import Path
from typing import Optional

ARTIFACT_ENTRY_POINT = "gitdeploy:main"


def artifact_name(version: str) -> str:
    return f"gitdeploy-{version}.pyz"


def package_root() -> Path:
    """Directory of the installed gitdeploy package."""
    return Path(__file__).resolve().parent.parent


def build_artifact(version: str, output_dir: Optional[str] = None) -> Path:
    """Bundle the gitdeploy package into an executable zipapp.

    Args:
        version: Version stamped into the file name
        output_dir: Where to write the archive (a fresh temp dir by default)

    Returns:
        Path to gitdeploy-<version>.pyz (caller removes it when done)
    """
    out_dir = Path(output_dir) if output_dir else Path(tempfile.mkdtemp(prefix="gitdeploy_"))
    target = out_dir / artifact_name(version)

    with tempfile.TemporaryDirectory(prefix="gitdeploy_stage_") as staging:
        shutil.copytree(
            package_root(),
            Path(staging) / "gitdeploy",
            ignore=shutil.ignore_patterns("__pycache__", "*.pyc", "*.pyo")
        )
        zipapp.create_archive(staging, target=str(target), main=ARTIFACT_ENTRY_POINT)

    return target
