from __future__ import annotations

import zipfile
from pathlib import Path

from erp_notice_sync.util.debug_bundle import create_debug_bundle


def test_create_debug_bundle_includes_debug_and_log(tmp_path: Path) -> None:
    debug_dir = tmp_path / "debug"
    debug_dir.mkdir()
    (debug_dir / "login_failure_NavigationError_20250711_100000.png").write_bytes(b"png")
    (debug_dir / "listing_unavailable_20250711_100000.html").write_text("<html/>", encoding="utf-8")

    log_file = tmp_path / "sync.log"
    log_file.write_text("hello", encoding="utf-8")
    (tmp_path / ".env").write_text("ERP_PASSWORD=secret", encoding="utf-8")

    out = create_debug_bundle(
        debug_dir=str(debug_dir),
        log_file=str(log_file),
        out_dir=str(tmp_path),
        run_id=7,
    )
    assert out.exists()
    assert out.suffix == ".zip"
    assert out.name.startswith("notice_sync_debug_run7_")

    with zipfile.ZipFile(out, "r") as z:
        names = set(z.namelist())
        assert names == {
            "sync.log",
            "debug/login_failure_NavigationError_20250711_100000.png",
            "debug/listing_unavailable_20250711_100000.html",
        }


def test_create_debug_bundle_with_nothing_to_collect(tmp_path: Path) -> None:
    out = create_debug_bundle(
        debug_dir=str(tmp_path / "missing"),
        log_file=str(tmp_path / "missing.log"),
        out_dir=str(tmp_path / "out"),
    )
    assert out.exists()
    assert out.name.startswith("notice_sync_debug_")
    with zipfile.ZipFile(out, "r") as z:
        assert z.namelist() == []
