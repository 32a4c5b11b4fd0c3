import logging

from basic_api.log import HANDLER_NAME, init_logging
from basic_api.main import main, parse_args


def test_init_logging_once(restore_root_logger, clean_env):
    assert init_logging("debug") is False
    assert init_logging() is True

    names = [handler.get_name() for handler in restore_root_logger.handlers]
    assert names.count(HANDLER_NAME) == 1
    assert restore_root_logger.level == logging.DEBUG


def test_init_logging_from_env(restore_root_logger, clean_env):
    clean_env.setenv("LOG_LEVEL", "warning")
    init_logging()
    assert restore_root_logger.level == logging.WARNING


def test_init_logging_unknown_level(restore_root_logger, clean_env):
    init_logging("chatty")
    assert restore_root_logger.level == logging.INFO


def test_parse_args_defaults():
    args = parse_args([])
    assert args.env_file == ".env"
    assert args.no_env_file is False
    assert args.log_level is None


def test_main_exits_nonzero_on_config_error(restore_root_logger, clean_env, caplog):
    """Test that a misconfigured process never serves and names the variable"""
    assert main(["--no-env-file"]) == 1
    assert "Configuration error" in caplog.text
    assert "DATABASE_URL" in caplog.text


def test_main_exits_nonzero_on_pool_error(restore_root_logger, clean_env, caplog):
    clean_env.setenv("DATABASE_URL", "definitely not a dsn")
    assert main(["--no-env-file"]) == 1
    assert "Database error" in caplog.text


def test_main_reads_env_file(restore_root_logger, clean_env, tmp_path, caplog):
    env_file = tmp_path / "service.env"
    env_file.write_text("DATABASE_URL=definitely not a dsn\n")
    assert main(["--env-file", str(env_file)]) == 1
    assert "invalid database connection string" in caplog.text


def test_main_exits_nonzero_on_undecodable_env_file(restore_root_logger, clean_env, tmp_path, caplog):
    env_file = tmp_path / "service.env"
    env_file.write_bytes(b"DATABASE_URL=\xff\n")
    assert main(["--env-file", str(env_file)]) == 1
    assert "Configuration error" in caplog.text
    assert "not valid UTF-8" in caplog.text
