import asyncio
import importlib.util
import sys
from pathlib import Path

SCRIPTS = Path(__file__).resolve().parents[2] / "scripts"


def load_script(name: str):
    spec = importlib.util.spec_from_file_location(f"{name}_script", SCRIPTS / f"{name}.py")
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def test_verify_payload_reports_scan_timeout(tmp_path, monkeypatch, capsys):
    script = load_script("verify_payload")

    async def never_finds(source, timeout=None):
        raise asyncio.TimeoutError()

    frames = tmp_path / "frames.txt"
    frames.write_text("blurry frame\n", encoding="utf-8")
    monkeypatch.setattr(script, "scan_for_payload", never_finds)
    monkeypatch.setattr(sys, "argv", ["verify_payload.py", "--frames", str(frames), "--timeout", "0.5"])

    assert script.main() == 2
    assert "[ERROR] ScanTimeout" in capsys.readouterr().err
