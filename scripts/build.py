#!/usr/bin/env python3
"""
scripts/build.py — Build a standalone pngtuber-relay executable.

The frozen binary keeps config.json and images/ next to itself (see
config.settings.app_dir), so it can be dropped into any folder and run.

Usage:
    python scripts/build.py [--onefile] [--name pngtuber-relay]

Requires: pip install pyinstaller
"""

import subprocess
import sys
from pathlib import Path


def build(name: str = "pngtuber-relay", onefile: bool = True):
    root = Path(__file__).parent.parent
    entry = root / "pngtuber_relay" / "_entry.py"

    # Default to `start` when launched by double-click
    entry.write_text(
        "import sys\n"
        "from pngtuber_relay.main import app\n"
        "if __name__ == '__main__':\n"
        "    if len(sys.argv) == 1:\n"
        "        sys.argv.append('start')\n"
        "    app()\n"
    )

    cmd = [
        sys.executable, "-m", "PyInstaller",
        "--name", name,
        "--clean",
        "--noconfirm",
        "--hidden-import", "pngtuber_relay.config.settings",
        "--hidden-import", "pngtuber_relay.config.store",
        "--hidden-import", "pngtuber_relay.core.obs_client",
        "--hidden-import", "pngtuber_relay.api.server",
        "--hidden-import", "pngtuber_relay.api.hub",
        "--hidden-import", "uvicorn.lifespan.on",
        "--hidden-import", "uvicorn.protocols.http.auto",
        "--hidden-import", "uvicorn.protocols.websockets.auto",
        "--hidden-import", "uvicorn.logging",
    ]

    web_dir = root / "web"
    if web_dir.is_dir():
        cmd += ["--add-data", f"{web_dir}:web"]

    if onefile:
        cmd.append("--onefile")

    cmd.append(str(entry))

    print(f"Building: {' '.join(cmd)}\n")
    result = subprocess.run(cmd, cwd=root)

    # Cleanup temp entry
    entry.unlink(missing_ok=True)

    if result.returncode == 0:
        print(f"\n✓ Build successful: {root / 'dist' / name}")
    else:
        print("\n✗ Build failed.")
        sys.exit(1)


if __name__ == "__main__":
    import argparse
    parser = argparse.ArgumentParser()
    parser.add_argument("--name", default="pngtuber-relay")
    parser.add_argument("--onefile", action="store_true", default=True)
    parser.add_argument("--onedir", dest="onefile", action="store_false")
    args = parser.parse_args()
    build(name=args.name, onefile=args.onefile)
