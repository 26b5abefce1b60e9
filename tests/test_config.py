import logging
from pathlib import Path

import pytest

from sqlowser.config import LOG_LEVEL_ENV, build_app_config, default_log_path
from sqlowser.logging_setup import LOG_FORMAT, setup_logging
from sqlowser.main import main


def test_build_app_config_defaults(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.delenv(LOG_LEVEL_ENV, raising=False)
    config = build_app_config("~/data.db")

    assert config.database_path == tmp_path / "data.db"
    assert config.read_write is False
    assert config.page_size == 100
    assert config.log_level == "INFO"
    assert config.log_path == default_log_path()
    assert default_log_path() == tmp_path / ".config" / ".sqlowser" / "sqlowser.log"


def test_build_app_config_validates(monkeypatch) -> None:
    monkeypatch.delenv(LOG_LEVEL_ENV, raising=False)
    with pytest.raises(ValueError, match="Page size"):
        build_app_config("x.db", page_size=0)
    with pytest.raises(ValueError, match="timeout"):
        build_app_config("x.db", query_timeout_seconds=0)
    with pytest.raises(ValueError, match="log level"):
        build_app_config("x.db", log_level="chatty")


def test_log_level_environment_override(monkeypatch) -> None:
    monkeypatch.setenv(LOG_LEVEL_ENV, "debug")
    assert build_app_config("x.db", log_level="ERROR").log_level == "DEBUG"


def test_setup_logging_writes_to_file(tmp_path: Path) -> None:
    log_path = tmp_path / "logs" / "sqlowser.log"
    root_logger = logging.getLogger()
    saved_handlers = list(root_logger.handlers)
    saved_level = root_logger.level
    try:
        setup_logging("INFO", log_path)
        logging.getLogger("sqlowser.test").info("hello log")
        for handler in root_logger.handlers:
            handler.flush()
        contents = log_path.read_text()
    finally:
        for handler in list(root_logger.handlers):
            root_logger.removeHandler(handler)
            handler.close()
        for handler in saved_handlers:
            root_logger.addHandler(handler)
        root_logger.setLevel(saved_level)

    assert "| INFO | sqlowser.test | hello log" in contents
    assert LOG_FORMAT.count("|") == 3


def test_main_reports_missing_database(tmp_path: Path, capsys, monkeypatch) -> None:
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.delenv(LOG_LEVEL_ENV, raising=False)
    exit_code = main([str(tmp_path / "missing.db"), "--log-file", str(tmp_path / "run.log")])
    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()

    assert exit_code == 1
    assert "Database file not found" in capsys.readouterr().err


def test_main_export_subcommand(db_path: Path, tmp_path: Path, capsys) -> None:
    target = tmp_path / "orders.json"
    exit_code = main(
        ["export", "--db", str(db_path), "--table", "orders", "--format", "json", "--out", str(target)]
    )

    assert exit_code == 0
    assert "Exported 3 rows" in capsys.readouterr().out
    assert target.exists()


def test_main_export_unknown_table(db_path: Path, tmp_path: Path, capsys) -> None:
    exit_code = main(
        ["export", "--db", str(db_path), "--table", "nope", "--out", str(tmp_path / "x.csv")]
    )
    assert exit_code == 1
    assert "table not found" in capsys.readouterr().err


def test_main_rejects_bad_page_size(tmp_path: Path) -> None:
    with pytest.raises(SystemExit):
        main([str(tmp_path / "x.db"), "--page-size", "0"])
