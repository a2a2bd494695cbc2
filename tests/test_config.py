"""Tests for configuration loading."""

from pathlib import Path

import pytest

from pyipfsync.config import (
    DEFAULT_DB_PATH,
    ConfigFile,
    Configuration,
)
from pyipfsync.exceptions import IpfsConfigError
from pyipfsync.utils import DEFAULT_IGNORE_SUFFIXES

CONFIG_YAML = """\
BasePath: /sync/
EndPoint: http://10.0.0.2:5001
Dirs:
  - ID: docs
    Dir: /home/user/docs/
    Pin: true
Sync: 1m 30s
Timeout: 5s
Ignore: [tmp]
DB: /tmp/test.db
IgnoreHidden: true
EstuaryAPIKey: secret
VerifyFilestore: true
"""


class TestConfigFile:
    """Tests for ConfigFile."""

    def test_load(self, tmp_path):
        """All YAML keys are read, durations parsed."""
        path = tmp_path / "config.yaml"
        path.write_text(CONFIG_YAML)

        config_file = ConfigFile.load(path)

        assert config_file.base_path == "/sync/"
        assert config_file.endpoint == "http://10.0.0.2:5001"
        assert config_file.dirs == [
            {"ID": "docs", "Dir": "/home/user/docs/", "Pin": True}
        ]
        assert config_file.sync == 90.0
        assert config_file.timeout == 5.0
        assert config_file.ignore == ["tmp"]
        assert config_file.db == "/tmp/test.db"
        assert config_file.ignore_hidden is True
        assert config_file.estuary_api_key == "secret"
        assert config_file.verify_filestore is True

    def test_missing_file_generates_sample(self, tmp_path):
        """A sample file is written and loaded when none exists."""
        path = tmp_path / "nested" / "config.yaml"

        config_file = ConfigFile.load(path)

        assert path.exists()
        assert config_file is not None
        assert config_file.dirs == []
        assert config_file.sync == 10.0
        assert config_file.ignore == DEFAULT_IGNORE_SUFFIXES
        assert config_file.db == str(DEFAULT_DB_PATH)

    def test_invalid_yaml_skipped(self, tmp_path):
        """An unparseable file is skipped."""
        path = tmp_path / "config.yaml"
        path.write_text("Dirs: [unclosed\n")
        assert ConfigFile.load(path) is None

    def test_non_mapping_skipped(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("- just\n- a list\n")
        assert ConfigFile.load(path) is None

    def test_invalid_duration(self):
        """A bad duration is a configuration error."""
        with pytest.raises(IpfsConfigError, match="Sync"):
            ConfigFile.from_dict({"Sync": "soon"})

    def test_dirs_must_be_list(self):
        with pytest.raises(IpfsConfigError, match="Dirs"):
            ConfigFile.from_dict({"Dirs": {"ID": "docs"}})


class TestConfiguration:
    """Tests for Configuration."""

    def test_defaults(self):
        """Without arguments or a file the built-in defaults apply."""
        config = Configuration.create({}, None)
        assert config.base_path == "/ipfs-sync/"
        assert config.endpoint == "http://127.0.0.1:5001"
        assert config.sync == 10.0
        assert config.timeout == 30.0
        assert config.db == DEFAULT_DB_PATH
        assert config.ignore_hidden is False
        assert config.dirs == []
        assert config.ignore == DEFAULT_IGNORE_SUFFIXES
        assert config.verify_filestore is False
        assert config.estuary_api_key is None

    def test_file_overrides_defaults(self):
        config_file = ConfigFile(endpoint="http://node:5001", sync=60.0)
        config = Configuration.create({}, config_file)
        assert config.endpoint == "http://node:5001"
        assert config.sync == 60.0

    def test_args_override_file(self):
        """Command line values win over the config file."""
        config_file = ConfigFile(endpoint="http://node:5001", ignore_hidden=True)
        config = Configuration.create(
            {"endpoint": "http://cli:5001", "ignore_hidden": False}, config_file
        )
        assert config.endpoint == "http://cli:5001"
        assert config.ignore_hidden is False

    def test_empty_db_disables_store(self):
        """An empty db path runs without change tracking."""
        config = Configuration.create({}, ConfigFile(db=""))
        assert config.db is None

    def test_db_path_from_args(self):
        config = Configuration.create({"db": "/tmp/x.db"}, None)
        assert config.db == Path("/tmp/x.db")

    def test_directories(self):
        """Raw entries are turned into monitored directories."""
        config = Configuration.create(
            {"dirs": [{"ID": "docs", "Dir": "/docs"}, {"ID": "pics", "Dir": "/pics"}]},
            None,
        )
        directories = config.directories()
        assert [d.id for d in directories] == ["docs", "pics"]
        assert directories[0].path == "/docs/"

    def test_directories_missing(self):
        """Running without directories is fatal."""
        with pytest.raises(IpfsConfigError, match="Missing configuration"):
            Configuration.create({}, None).directories()

    def test_directories_empty_path(self):
        config = Configuration.create({"dirs": [{"ID": "docs", "Dir": ""}]}, None)
        with pytest.raises(IpfsConfigError, match="cannot be empty"):
            config.directories()

    def test_directories_duplicate_ids(self):
        config = Configuration.create(
            {"dirs": [{"ID": "docs", "Dir": "/a"}, {"ID": "docs", "Dir": "/b"}]},
            None,
        )
        with pytest.raises(IpfsConfigError, match="Duplicate"):
            config.directories()
