import pytest
from typer.testing import CliRunner

from skilld.cache.store import CachedDoc, CacheStore
from skilld.core.lockfile import SkillInfo, read_lock, write_lock
from skilld.main import app

runner = CliRunner()


@pytest.fixture(autouse=True)
def skilld_home(tmp_path, monkeypatch):
    home = tmp_path / "home"
    monkeypatch.setenv("SKILLD_HOME", str(home))
    return home


@pytest.fixture
def skills_dir(tmp_path):
    path = tmp_path / "skills"
    path.mkdir()
    return path


class TestLockCommands:
    def test_show_without_lockfile(self, skills_dir):
        result = runner.invoke(app, ["lock", "show", "--skills-dir", str(skills_dir)])
        assert result.exit_code == 0
        assert "No lockfile" in result.output

    def test_show_and_remove(self, skills_dir):
        write_lock(skills_dir, "vue", SkillInfo(package_name="vue", version="3.4.0", synced_at="2024-05-01"))

        result = runner.invoke(app, ["lock", "show", "--skills-dir", str(skills_dir)])
        assert result.exit_code == 0
        assert "3.4.0" in result.output

        result = runner.invoke(app, ["lock", "remove", "vue", "--skills-dir", str(skills_dir)])
        assert result.exit_code == 0
        assert read_lock(skills_dir) is None

        result = runner.invoke(app, ["lock", "remove", "vue", "--skills-dir", str(skills_dir)])
        assert result.exit_code == 1

    def test_sync_merges_and_recovers(self, tmp_path):
        a = tmp_path / "a"
        b = tmp_path / "b"
        a.mkdir()
        b.mkdir()
        write_lock(a, "vue", SkillInfo(package_name="vue", version="3.3.0", synced_at="2024-01-01"))
        write_lock(b, "vue", SkillInfo(package_name="vue", version="3.4.0", synced_at="2024-06-01"))
        (b / "react").mkdir()
        (b / "react" / "SKILL.md").write_text(
            "---\nname: react\npackageName: react\nversion: 18.2.0\n---\n\n# React\n"
        )

        result = runner.invoke(app, ["lock", "sync", str(a), str(b)])

        assert result.exit_code == 0
        for skills_dir in (a, b):
            lock = read_lock(skills_dir)
            assert lock.skills["vue"].version == "3.4.0"
            assert lock.skills["react"].version == "18.2.0"


class TestCacheCommands:
    def test_list_empty(self):
        result = runner.invoke(app, ["cache", "list"])
        assert result.exit_code == 0
        assert "Cache is empty" in result.output

    def test_list_and_clean(self, skilld_home):
        store = CacheStore(skilld_home)
        store.write("vue", "3.4.0", [CachedDoc("docs/a.md", "# A")])

        result = runner.invoke(app, ["cache", "list"])
        assert result.exit_code == 0
        assert "vue" in result.output

        result = runner.invoke(app, ["cache", "clean", "vue@3.4.0"])
        assert result.exit_code == 0
        assert not store.is_cached("vue", "3.4.0")

    def test_clean_requires_version(self):
        result = runner.invoke(app, ["cache", "clean", "vue"])
        assert result.exit_code == 1

    def test_clean_rejects_traversal(self):
        result = runner.invoke(app, ["cache", "clean", "vue@.."])
        assert result.exit_code == 1


class TestSearchCommand:
    def test_requires_version(self):
        result = runner.invoke(app, ["search", "reactivity", "--package", "vue"])
        assert result.exit_code == 1

    def test_missing_index(self):
        result = runner.invoke(app, ["search", "reactivity", "--package", "vue@3.4.0"])
        assert result.exit_code == 1
        assert "No search index" in result.output
