import json

from sheet_scan import cli


def test_scan_command_prints_metadata(tmp_path, settings, make_sheet, monkeypatch, capsys):
    monkeypatch.setattr(cli, "load_settings", lambda: settings)
    cover = tmp_path / "cover.jpg"
    sheet = tmp_path / "sheet.jpg"
    cover.write_bytes(make_sheet(600, 600))
    sheet.write_bytes(make_sheet(700, 400))
    storage = tmp_path / "out"

    code = cli.main(["--storage-root", str(storage), "scan", "--roll", "R42", str(cover), str(sheet)])

    assert code == 0
    result = json.loads(capsys.readouterr().out)
    assert result["page_count"] == 3
    assert result["path"].startswith(str(storage.resolve()))

    assert cli.main(["info", result["path"]]) == 0
    info = json.loads(capsys.readouterr().out)
    assert info["page_count"] == 3

    thumb = tmp_path / "thumb.jpg"
    assert cli.main(["thumbnail", result["path"], "-o", str(thumb)]) == 0
    assert thumb.read_bytes().startswith(b"\xff\xd8")


def test_scan_command_fails_for_missing_file(tmp_path, settings, monkeypatch):
    monkeypatch.setattr(cli, "load_settings", lambda: settings)

    assert cli.main(["scan", "--roll", "R1", str(tmp_path / "nope.jpg")]) == 1


def test_info_for_missing_document(tmp_path):
    assert cli.main(["info", str(tmp_path / "missing.pdf")]) == 1
