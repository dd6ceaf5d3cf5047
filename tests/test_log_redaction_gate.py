"""Tests for the log redaction gate script."""

from pathlib import Path

from scripts.gate_log_redaction import check_file, check_tree

SRC = Path(__file__).resolve().parent.parent / "src"


def _write(tmp_path, body: str) -> Path:
    path = tmp_path / "module.py"
    path.write_text(body, encoding="utf-8")
    return path


def test_source_tree_is_clean():
    assert check_tree(SRC) == []


def test_print_rejected(tmp_path):
    errors = check_file(_write(tmp_path, 'print("folio closed")\n'))
    assert len(errors) == 1
    assert "print()" in errors[0]


def test_print_in_comment_ignored(tmp_path):
    assert check_file(_write(tmp_path, "# print(folio)\nx = 1\n")) == []


def test_raw_extra_rejected(tmp_path):
    body = 'logger.info(\n    "payment recorded",\n    extra={"folio_id": folio_id},\n)\n'
    errors = check_file(_write(tmp_path, body))
    assert errors == [f"{tmp_path / 'module.py'}:1: logger extra= must be built with log_fields()"]


def test_log_fields_accepted(tmp_path):
    body = (
        'logger.warning(\n'
        '    "service account mismatch",\n'
        '    extra=log_fields(expected_email=expected, token_email=actual),\n'
        ')\n'
    )
    assert check_file(_write(tmp_path, body)) == []


def test_guest_field_in_message_rejected(tmp_path):
    body = 'logger.info(f"guest {guest.email} checked out")\n'
    errors = check_file(_write(tmp_path, body))
    assert any("'email'" in e for e in errors)
