import subprocess
from pathlib import Path

from sheet_scan import compressor
from sheet_scan.compressor import compress_document, build_command


def write_input(tmp_path: Path, size: int = 4096) -> Path:
    path = tmp_path / "raw.pdf"
    path.write_bytes(b"%PDF-1.4\n" + bytes(range(256)) * (size // 256))
    return path


def output_arg(cmd):
    for arg in cmd:
        if arg.startswith("-sOutputFile="):
            return Path(arg[len("-sOutputFile="):])
    raise AssertionError("no output argument")


def test_missing_tool_copies_input_verbatim(tmp_path, settings):
    src = write_input(tmp_path)
    dst = tmp_path / "out" / "final_compressed.pdf"

    result = compress_document(src, dst, settings)

    assert result.compressed is False
    assert result.path == dst
    assert dst.read_bytes() == src.read_bytes()
    assert "not found" in result.reason


def test_timeout_falls_back_to_copy(tmp_path, settings, monkeypatch):
    src = write_input(tmp_path)
    dst = tmp_path / "final.pdf"

    def slow(cmd, **kwargs):
        output_arg(cmd).write_bytes(b"partial")
        raise subprocess.TimeoutExpired(cmd, kwargs["timeout"])

    monkeypatch.setattr(compressor.subprocess, "run", slow)

    result = compress_document(src, dst, settings)

    assert result.compressed is False
    assert "timed out" in result.reason
    assert dst.read_bytes() == src.read_bytes()


def test_nonzero_exit_falls_back_to_copy(tmp_path, settings, monkeypatch):
    src = write_input(tmp_path)
    dst = tmp_path / "final.pdf"

    def failing(cmd, **kwargs):
        return subprocess.CompletedProcess(cmd, 1, stdout=b"", stderr=b"Unrecoverable error")

    monkeypatch.setattr(compressor.subprocess, "run", failing)

    result = compress_document(src, dst, settings)

    assert result.compressed is False
    assert "exit code 1" in result.reason
    assert dst.read_bytes() == src.read_bytes()


def test_smaller_output_is_kept(tmp_path, settings, monkeypatch):
    src = write_input(tmp_path)
    dst = tmp_path / "final.pdf"
    seen = {}

    def shrinking(cmd, **kwargs):
        seen["cmd"] = cmd
        seen["timeout"] = kwargs["timeout"]
        output_arg(cmd).write_bytes(b"%PDF-1.4 small")
        return subprocess.CompletedProcess(cmd, 0, stdout=b"", stderr=b"")

    monkeypatch.setattr(compressor.subprocess, "run", shrinking)

    result = compress_document(src, dst, settings)

    assert result.compressed is True
    assert dst.read_bytes() == b"%PDF-1.4 small"
    assert seen["cmd"][0] == settings.gs_binary
    assert seen["timeout"] == settings.compress_timeout


def test_larger_output_is_discarded(tmp_path, settings, monkeypatch):
    src = write_input(tmp_path, size=512)
    dst = tmp_path / "final.pdf"

    def growing(cmd, **kwargs):
        output_arg(cmd).write_bytes(b"x" * 10000)
        return subprocess.CompletedProcess(cmd, 0, stdout=b"", stderr=b"")

    monkeypatch.setattr(compressor.subprocess, "run", growing)

    result = compress_document(src, dst, settings)

    assert result.compressed is False
    assert dst.read_bytes() == src.read_bytes()


def test_command_uses_pdfwrite(settings, tmp_path):
    cmd = build_command(settings, tmp_path / "in.pdf", tmp_path / "out.pdf")

    assert "-sDEVICE=pdfwrite" in cmd
    assert f"-dPDFSETTINGS={settings.pdf_settings}" in cmd
    assert cmd[-1] == str(tmp_path / "in.pdf")
