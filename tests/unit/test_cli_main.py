from __future__ import annotations

from pathlib import Path

from form_changelog.cli import main as cli_main
from form_changelog.logging.init import reset_logging


def _run(argv: list[str], capsys) -> tuple[int, str]:
    reset_logging()
    code = cli_main(argv)
    out = capsys.readouterr().out
    reset_logging()
    return code, out


def test_cli_success(write_config, make_workbook, form_row, form_headers, temp_workdir: Path, capsys):
    wb = make_workbook("forms.xlsx", {"Inserts": [form_headers, form_row()]})
    code, out = _run([str(wb)], capsys)
    assert code == 0
    assert "SUMMARY accepted=1 failed=0 skipped=0 dropped=0 documents=1 elapsed_sec=" in out
    assert "changeset=CS1_insert records=1" in out
    assert (temp_workdir / "output" / "F1.xml").exists()
    assert (temp_workdir / "processed-keys.log").read_text(encoding="utf-8").splitlines() == ["F1-100"]


def test_cli_partial_failure(write_config, make_workbook, form_row, form_headers, temp_workdir: Path, capsys):
    wb = make_workbook(
        "forms.xlsx",
        {"Inserts": [form_headers, form_row(), form_row(formNbr="101", srtKey="123")]},
    )
    code, out = _run([str(wb)], capsys)
    assert code == 2
    assert "WARN row=3 sheet=Inserts Invalid srtKey format" in out
    assert "SUMMARY accepted=1 failed=1" in out
    assert list((temp_workdir / "logs").glob("errors-*.log"))


def test_cli_rerun_skips_everything(write_config, make_workbook, form_row, form_headers, capsys):
    wb = make_workbook("forms.xlsx", {"Inserts": [form_headers, form_row()]})
    assert _run([str(wb)], capsys)[0] == 0
    code, out = _run([str(wb)], capsys)
    assert code == 0
    assert "SUMMARY accepted=0 failed=0 skipped=1 dropped=0 documents=0" in out


def test_cli_missing_workbook(write_config, temp_workdir: Path, capsys):
    code, out = _run([str(temp_workdir / "data" / "missing.xlsx")], capsys)
    assert code == 1
    assert "ERROR workbook: workbook not found" in out


def test_cli_invalid_config(write_config, make_workbook, form_row, form_headers, capsys):
    write_config.write_text("output_directory: ./output\nbogus: 1\n", encoding="utf-8")
    wb = make_workbook("forms.xlsx", {"Inserts": [form_headers, form_row()]})
    code, out = _run([str(wb)], capsys)
    assert code == 1
    assert "ERROR config: config validation failed" in out


def test_cli_explicit_config_path(make_workbook, form_row, form_headers, temp_workdir: Path, capsys):
    cfg = temp_workdir / "other.yml"
    cfg.write_text("output_directory: ./custom\n", encoding="utf-8")
    wb = make_workbook("forms.xlsx", {"Sheet1": [form_headers, form_row()]})
    code, _ = _run([str(wb), "--config", str(cfg)], capsys)
    assert code == 0
    assert (temp_workdir / "custom" / "F1.xml").exists()
    assert (temp_workdir / "processed-keys.log").exists()


def test_cli_write_failure_is_fatal(write_config, make_workbook, form_row, form_headers, temp_workdir: Path, capsys):
    (temp_workdir / "output" / "F1.xml").mkdir(parents=True)
    wb = make_workbook("forms.xlsx", {"Inserts": [form_headers, form_row()]})
    code, out = _run([str(wb)], capsys)
    assert code == 1
    assert "ERROR write: cannot write" in out
    assert (temp_workdir / "processed-keys.log").read_text(encoding="utf-8") == ""


def test_cli_dotenv_overrides_output(write_config, make_workbook, form_row, form_headers, temp_workdir: Path, capsys,
                                     monkeypatch):
    monkeypatch.setenv("CHANGELOG_OUTPUT_DIR", "./from_process_env")
    (temp_workdir / ".env").write_text("CHANGELOG_OUTPUT_DIR=./from_dotenv\n", encoding="utf-8")
    wb = make_workbook("forms.xlsx", {"Inserts": [form_headers, form_row()]})
    code, _ = _run([str(wb)], capsys)
    assert code == 0
    assert (temp_workdir / "from_dotenv" / "F1.xml").exists()


def test_cli_debug_flag(write_config, make_workbook, form_row, form_headers, capsys):
    wb = make_workbook("forms.xlsx", {"Inserts": [form_headers, form_row()]})
    code, out = _run([str(wb), "--debug"], capsys)
    assert code == 0
    assert "DEBUG debug mode enabled" in out
    assert "DEBUG sheet=Inserts" in out


def test_cli_inspect_data(write_config, make_workbook, form_row, form_headers, temp_workdir: Path, capsys):
    wb = make_workbook("forms.xlsx", {"Inserts": [form_headers, form_row()]})
    code, out = _run([str(wb), "--inspect-data"], capsys)
    assert code == 0
    assert "FILE: forms.xlsx" in out
    assert "SHEET: Inserts cols=['fileName'" in out
    assert '"formNbr": "100"' in out
    assert not (temp_workdir / "output").exists()
