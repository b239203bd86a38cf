import os
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from pydantic import ValidationError

from docs_indexer.config import ConfigLoadRequest, YamlConfigLoader
from docs_indexer.config import loader as loader_module

CONFIG_YAML = """
embedding:
  model: nomic-embed-text
indexing:
  batch_size: 4
sources:
  - id: k3s
    name: K3s
    base_url: https://docs.k3s.io/
    fallback_paths: [/installation]
"""


class YamlConfigLoaderTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        self.yaml_path = self.root / "data" / "config" / "config.yaml"
        self.yaml_path.parent.mkdir(parents=True)

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def load(self, **env: str):
        request = ConfigLoadRequest(
            yaml_path=str(self.yaml_path),
            env_prefix="TEST_DOCS_INDEXER__",
            dotenv_path=str(self.root / "data" / ".env"),
        )
        with mock.patch.dict(os.environ, env):
            return YamlConfigLoader().load(request)

    def test_loads_yaml_with_defaults(self) -> None:
        self.yaml_path.write_text(CONFIG_YAML, encoding="utf-8")

        config = self.load()

        self.assertEqual(config.embedding.model, "nomic-embed-text")
        self.assertEqual(config.embedding.max_attempts, 3)
        self.assertEqual(config.indexing.batch_size, 4)
        self.assertEqual(config.indexing.lease_ttl_seconds, 1800)
        source = config.get_source("k3s")
        self.assertEqual(source.base_url, "https://docs.k3s.io")
        self.assertIn("/blog", source.exclude_patterns)
        self.assertTrue((self.root / "data" / "cache").is_dir())

    def test_environment_overrides_yaml(self) -> None:
        self.yaml_path.write_text(CONFIG_YAML, encoding="utf-8")

        config = self.load(
            TEST_DOCS_INDEXER__INDEXING__BATCH_SIZE="7",
            TEST_DOCS_INDEXER__EMBEDDING__API_KEY="secret",
        )

        self.assertEqual(config.indexing.batch_size, 7)
        self.assertEqual(config.embedding.api_key, "secret")

    def test_dotenv_values_are_applied(self) -> None:
        self.yaml_path.write_text(CONFIG_YAML, encoding="utf-8")
        (self.root / "data" / ".env").write_text("TEST_DOCS_INDEXER__STORE__PATH=/tmp/other.db\n", encoding="utf-8")

        with mock.patch.dict(os.environ, {}):
            config = self.load()

        self.assertEqual(config.store.path, "/tmp/other.db")

    def test_unknown_keys_are_rejected(self) -> None:
        self.yaml_path.write_text("indexing:\n  batch_width: 3\n", encoding="utf-8")
        with self.assertRaises(ValidationError):
            self.load()

    def test_duplicate_source_ids_are_rejected(self) -> None:
        self.yaml_path.write_text(
            "sources:\n  - {id: a, base_url: https://a.example}\n  - {id: a, base_url: https://b.example}\n",
            encoding="utf-8",
        )
        with self.assertRaises(ValidationError):
            self.load()

    def test_unknown_source_lookup_raises_key_error(self) -> None:
        self.yaml_path.write_text(CONFIG_YAML, encoding="utf-8")
        with self.assertRaises(KeyError):
            self.load().get_source("missing")

    def test_example_config_is_copied_on_first_use(self) -> None:
        example = self.root / "example.yaml"
        example.write_text(CONFIG_YAML, encoding="utf-8")

        with mock.patch.object(loader_module, "EXAMPLE_CONFIG_PATH", example):
            config = self.load()

        self.assertTrue(self.yaml_path.exists())
        self.assertEqual(config.sources[0].id, "k3s")

    def test_top_level_must_be_mapping(self) -> None:
        self.yaml_path.write_text("- a\n- b\n", encoding="utf-8")
        with self.assertRaises(ValueError):
            self.load()


if __name__ == "__main__":
    unittest.main()
