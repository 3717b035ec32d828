from __future__ import annotations

import time
import zipfile
from pathlib import Path


def create_debug_bundle(*, debug_dir: str, log_file: str, out_dir: str = "data", run_id: object = "") -> Path:
    """
    Zip the portal debug artifacts (screenshots, HTML, body text) together with the sync log.

    Only those two sources are collected; .env and YAML config files never go into the bundle.
    """
    out_root = Path(out_dir)
    out_root.mkdir(parents=True, exist_ok=True)

    stamp = time.strftime("%Y%m%d_%H%M%S")
    run_part = f"_run{run_id}" if run_id not in ("", None) else ""
    out_path = out_root / f"notice_sync_debug{run_part}_{stamp}.zip"

    dbg = Path(debug_dir)
    log = Path(log_file)

    with zipfile.ZipFile(out_path, "w", compression=zipfile.ZIP_DEFLATED) as z:
        if log.is_file():
            z.write(log, arcname=log.name)

        if dbg.is_dir():
            for p in sorted(dbg.rglob("*")):
                if not p.is_file():
                    continue
                try:
                    z.write(p, arcname=str(Path("debug") / p.relative_to(dbg)))
                except OSError:
                    # Artifacts can be rotated away while we zip.
                    continue

    return out_path
