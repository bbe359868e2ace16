"""Unit tests for config loading and connection references."""

import argparse
from pathlib import Path

import pytest

from sqldelta.config import (
    Settings,
    Target,
    env_connections,
    find_config,
    get_env_var,
    load_config,
    read_settings,
    read_table_filter,
    resolve_target,
    split_table,
)

CONFIG = """
connections:
  prod: pg://app@db.example.com/shop
  local: sqlite:///shop.db
dumps_dir: from-config
log_level: warning
table_filter:
  include: ["orders%"]
  exclude: ["TMP_%"]
  case_sensitive: true
diff:
  key: uuid
  limit: 50
"""


def make_args(**kwargs) -> argparse.Namespace:
    defaults = {"config": None, "include": [], "exclude": [], "dumps_dir": None, "log_level": None}
    defaults.update(kwargs)
    return argparse.Namespace(**defaults)


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    path = tmp_path / "sqldelta.yml"
    path.write_text(CONFIG, encoding="utf-8")
    return path


class TestLoadConfig:
    """Tests for load_config and find_config functions."""

    def test_load_valid_config(self, config_file: Path) -> None:
        """Test loading a valid YAML config."""
        cfg = load_config(config_file)
        assert cfg["diff"]["limit"] == 50

    def test_load_missing_config_raises(self, tmp_path: Path) -> None:
        """Test loading missing config raises SystemExit."""
        with pytest.raises(SystemExit, match="config not found"):
            load_config(tmp_path / "nonexistent.yml")

    def test_load_non_mapping_raises(self, tmp_path: Path) -> None:
        """Test a YAML list is not a config."""
        path = tmp_path / "list.yml"
        path.write_text("- a\n- b\n", encoding="utf-8")
        with pytest.raises(SystemExit, match="expected a mapping"):
            load_config(path)

    def test_load_empty_config(self, tmp_path: Path) -> None:
        """Test an empty file is an empty config."""
        path = tmp_path / "empty.yml"
        path.write_text("", encoding="utf-8")
        assert load_config(path) == {}

    def test_find_config_order(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test --config, then $SQLDELTA_CONFIG, then ./sqldelta.yml."""
        monkeypatch.chdir(tmp_path)
        assert find_config() is None
        (tmp_path / "sqldelta.yml").write_text("{}\n", encoding="utf-8")
        assert find_config() == Path("sqldelta.yml")
        monkeypatch.setenv("SQLDELTA_CONFIG", "/etc/sqldelta.yml")
        assert find_config() == Path("/etc/sqldelta.yml")
        assert find_config("other.yml") == Path("other.yml")


class TestEnvironment:
    """Tests for environment variable helpers."""

    def test_get_env_var(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test SQLDELTA_<NAME> lookup."""
        monkeypatch.setenv("SQLDELTA_LOG_LEVEL", "debug")
        assert get_env_var("log_level") == "debug"
        assert get_env_var("dumps_dir") is None

    def test_empty_env_var_is_none(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test an empty variable counts as unset."""
        monkeypatch.setenv("SQLDELTA_DUMPS_DIR", "")
        assert get_env_var("dumps_dir") is None

    def test_env_connections(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test SQLDELTA_CONN_<ALIAS> variables, aliases lowercased."""
        monkeypatch.setenv("SQLDELTA_CONN_STAGING", "pg://staging/shop")
        assert env_connections() == {"staging": "pg://staging/shop"}


class TestReadSettings:
    """Tests for read_table_filter and read_settings functions."""

    def test_table_filter_cli_extends_config(self) -> None:
        """Test CLI patterns are appended to config patterns."""
        cfg = {"table_filter": {"include": ["a%"], "exclude": ["b%"]}}
        tf = read_table_filter(cfg, make_args(include=["c%"], exclude=["d%"]))
        assert tf.include == ["a%", "c%"]
        assert tf.exclude == ["b%", "d%"]
        assert tf.case_sensitive is False

    def test_settings_from_config(self, config_file: Path) -> None:
        """Test every config key lands in Settings."""
        settings = read_settings(make_args(config=str(config_file)))
        assert settings.connections["prod"] == "pg://app@db.example.com/shop"
        assert settings.dumps_dir == Path("from-config")
        assert settings.log_level == "WARNING"
        assert settings.table_filter.include == ["orders%"]
        assert settings.table_filter.case_sensitive is True
        assert (settings.diff_key, settings.diff_limit) == ("uuid", 50)
        assert settings.config_path == config_file

    def test_precedence(self, config_file: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test environment over CLI over config."""
        args = make_args(config=str(config_file), dumps_dir="from-cli")
        assert read_settings(args).dumps_dir == Path("from-cli")
        monkeypatch.setenv("SQLDELTA_DUMPS_DIR", "from-env")
        assert read_settings(args).dumps_dir == Path("from-env")

    def test_env_connection_overrides_config(self, config_file: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test SQLDELTA_CONN_<ALIAS> replaces a configured alias."""
        monkeypatch.setenv("SQLDELTA_CONN_PROD", "mysql://replica/shop")
        assert read_settings(make_args(config=str(config_file))).connections["prod"] == "mysql://replica/shop"

    def test_invalid_limit(self, tmp_path: Path) -> None:
        """Test a non-integer diff.limit is a config error."""
        path = tmp_path / "bad.yml"
        path.write_text("diff:\n  limit: lots\n", encoding="utf-8")
        with pytest.raises(SystemExit, match="diff.limit"):
            read_settings(make_args(config=str(path)))

    def test_defaults_without_config(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test defaults when no config file exists."""
        monkeypatch.chdir(tmp_path)
        settings = read_settings(make_args())
        assert settings.config_path is None
        assert (settings.diff_key, settings.diff_limit, settings.log_level) == ("id", 20, "INFO")


class TestResolveTarget:
    """Tests for split_table and resolve_target functions."""

    @pytest.mark.parametrize(
        "ref,url,table",
        [
            ("pg://app@host:5432/shop/orders", "postgresql://app@host:5432/shop", "orders"),
            ("postgresql://host/shop", "postgresql://host/shop", None),
            ("my://host/shop/orders?charset=utf8mb4", "mysql://host/shop?charset=utf8mb4", "orders"),
            ("sqlite:///data/shop.db/orders", "sqlite:///data/shop.db", "orders"),
            ("sqlite:////abs/shop.db", "sqlite:////abs/shop.db", None),
            ("sf://me@acme/SALES/PUBLIC/ORDERS?warehouse=WH", "snowflake://me@acme/SALES/PUBLIC?warehouse=WH", "ORDERS"),
            ("sf://me@acme/SALES/PUBLIC", "snowflake://me@acme/SALES/PUBLIC", None),
        ],
    )
    def test_split_table(self, ref: str, url: str, table: str) -> None:
        """Test the table segment is split off per engine."""
        assert split_table(ref) == Target(url, table)

    def test_alias_with_table(self) -> None:
        """Test alias/table references."""
        settings = Settings(connections={"prod": "pg://app@db/shop"})
        target = resolve_target("prod/orders", settings)
        assert target == Target("postgresql://app@db/shop", "orders", "prod")
        assert target.describe() == "prod/orders"

    def test_alias_query_params_kept(self) -> None:
        """Test query parameters on an alias reference are appended."""
        settings = Settings(connections={"prod": "pg://db/shop?sslmode=require"})
        target = resolve_target("prod?connect_timeout=5", settings)
        assert target.url == "postgresql://db/shop?sslmode=require&connect_timeout=5"
        assert target.table is None

    def test_unknown_alias(self) -> None:
        """Test an unknown alias is a config error naming the env variable."""
        with pytest.raises(SystemExit, match="SQLDELTA_CONN_NOPE"):
            resolve_target("nope/orders", Settings())
