from skilld.core.lockfile import (
    LOCK_FILENAME,
    SkilldLock,
    SkillInfo,
    merge_locks,
    parse_lock,
    parse_packages,
    parse_skill_frontmatter,
    read_lock,
    recover_lock,
    remove_lock_entry,
    serialize_lock,
    serialize_packages,
    sync_lockfiles_to_dirs,
    write_lock,
)
from skilld.core.yaml_lite import yaml_escape, yaml_parse_kv, yaml_unescape

SAMPLE_LOCK = """skills:
  vue:
    packageName: vue
    version: 3.4.0
    repo: vuejs/core
    source: "https://github.com/vuejs/core/tree/v3.4.0/docs"
    syncedAt: 2024-05-01
    generator: skilld
  nuxt-kit:
    packageName: "@nuxt/kit"
    version: 3.0.0
    unknownKey: ignored
"""


class TestYamlLite:
    def test_plain_values_are_not_quoted(self):
        assert yaml_escape("vue") == "vue"
        assert yaml_escape("3.4.0") == "3.4.0"

    def test_special_values_are_quoted(self):
        assert yaml_escape("@nuxt/kit") == '"@nuxt/kit"'
        assert yaml_escape('say "hi"\n') == '"say \\"hi\\"\\n"'

    def test_unescape(self):
        assert yaml_unescape('"a\\nb\\"c"') == 'a\nb"c'
        assert yaml_unescape("'single'") == "single"
        assert yaml_unescape("  plain  ") == "plain"

    def test_escape_round_trip(self):
        for value in ["https://x.dev/a#b", "tab\there", "back\\slash", "a, b, c"]:
            assert yaml_unescape(yaml_escape(value)) == value

    def test_parse_kv_splits_on_first_colon(self):
        assert yaml_parse_kv('source: "https://x.dev"') == ("source", "https://x.dev")
        assert yaml_parse_kv("no colon here") is None
        assert yaml_parse_kv(": value") is None


class TestParseSerialize:
    def test_parse(self):
        lock = parse_lock(SAMPLE_LOCK)
        assert set(lock.skills) == {"vue", "nuxt-kit"}
        vue = lock.skills["vue"]
        assert vue.package_name == "vue"
        assert vue.source == "https://github.com/vuejs/core/tree/v3.4.0/docs"
        assert vue.synced_at == "2024-05-01"
        assert lock.skills["nuxt-kit"].package_name == "@nuxt/kit"

    def test_serialize_field_order_and_quoting(self):
        lock = SkilldLock(skills={
            "kit": SkillInfo(package_name="@nuxt/kit", version="3.0.0", generator="skilld", synced_at="2024-05-01"),
        })
        assert serialize_lock(lock) == (
            "skills:\n"
            "  kit:\n"
            '    packageName: "@nuxt/kit"\n'
            "    version: 3.0.0\n"
            "    syncedAt: 2024-05-01\n"
            "    generator: skilld\n"
        )

    def test_round_trip(self):
        lock = parse_lock(SAMPLE_LOCK)
        assert parse_lock(serialize_lock(lock)) == lock


class TestPackages:
    def test_parse_scoped(self):
        assert parse_packages("@vue/reactivity@3.4.0, vue@3.4.0") == [
            ("@vue/reactivity", "3.4.0"),
            ("vue", "3.4.0"),
        ]

    def test_parse_empty(self):
        assert parse_packages(None) == []
        assert parse_packages("") == []

    def test_serialize(self):
        assert serialize_packages([("a", "1"), ("@s/b", "2")]) == "a@1, @s/b@2"


class TestWriteLock:
    def test_creates_file(self, tmp_path):
        write_lock(tmp_path, "vue", SkillInfo(package_name="vue", version="3.4.0", source="docs"))
        assert (tmp_path / LOCK_FILENAME).exists()
        assert read_lock(tmp_path).skills["vue"].version == "3.4.0"

    def test_different_package_merges_into_packages(self, tmp_path):
        write_lock(tmp_path, "vue", SkillInfo(package_name="vue", version="3.4.0", repo="vuejs/core", source="git"))
        merged = write_lock(tmp_path, "vue", SkillInfo(package_name="@vue/reactivity", version="3.4.1"))

        assert merged.package_name == "vue"
        assert merged.version == "3.4.0"
        assert merged.repo == "vuejs/core"
        assert merged.source == "git"
        assert parse_packages(merged.packages) == [("vue", "3.4.0"), ("@vue/reactivity", "3.4.1")]
        assert read_lock(tmp_path).skills["vue"] == merged

    def test_same_package_overwrites_and_keeps_package_list(self, tmp_path):
        write_lock(tmp_path, "vue", SkillInfo(package_name="vue", version="3.4.0"))
        write_lock(tmp_path, "vue", SkillInfo(package_name="@vue/reactivity", version="3.4.0"))
        updated = write_lock(tmp_path, "vue", SkillInfo(package_name="vue", version="3.5.0", source="llms"))

        assert updated.version == "3.5.0"
        assert updated.source == "llms"
        assert parse_packages(updated.packages) == [("vue", "3.5.0"), ("@vue/reactivity", "3.4.0")]

    def test_single_package_has_no_packages_field(self, tmp_path):
        write_lock(tmp_path, "vue", SkillInfo(package_name="vue", version="3.4.0"))
        info = write_lock(tmp_path, "vue", SkillInfo(package_name="vue", version="3.4.1"))
        assert info.packages is None
        assert "packages:" not in (tmp_path / LOCK_FILENAME).read_text()

    def test_other_skills_untouched(self, tmp_path):
        write_lock(tmp_path, "vue", SkillInfo(package_name="vue", version="3.4.0"))
        write_lock(tmp_path, "react", SkillInfo(package_name="react", version="18.2.0"))
        assert set(read_lock(tmp_path).skills) == {"vue", "react"}


class TestRemove:
    def test_remove_entry(self, tmp_path):
        write_lock(tmp_path, "vue", SkillInfo(package_name="vue", version="3.4.0"))
        write_lock(tmp_path, "react", SkillInfo(package_name="react", version="18.2.0"))

        assert remove_lock_entry(tmp_path, "vue") is True
        assert set(read_lock(tmp_path).skills) == {"react"}

    def test_last_entry_deletes_file(self, tmp_path):
        write_lock(tmp_path, "vue", SkillInfo(package_name="vue", version="3.4.0"))
        assert remove_lock_entry(tmp_path, "vue") is True
        assert not (tmp_path / LOCK_FILENAME).exists()

    def test_missing_entry(self, tmp_path):
        assert remove_lock_entry(tmp_path, "vue") is False


class TestMergeLocks:
    def test_newest_synced_at_wins(self):
        old = SkilldLock(skills={"vue": SkillInfo(package_name="vue", version="3.3.0", synced_at="2024-01-01")})
        new = SkilldLock(skills={"vue": SkillInfo(package_name="vue", version="3.4.0", synced_at="2024-06-01")})
        undated = SkilldLock(skills={"vue": SkillInfo(package_name="vue", version="9.9.9")})

        merged = merge_locks([old, undated, new])
        assert merged.skills["vue"].version == "3.4.0"

        merged = merge_locks([new, old])
        assert merged.skills["vue"].version == "3.4.0"

    def test_union_of_skills(self):
        a = SkilldLock(skills={"vue": SkillInfo(package_name="vue")})
        b = SkilldLock(skills={"react": SkillInfo(package_name="react")})
        assert set(merge_locks([a, b]).skills) == {"vue", "react"}

    def test_sync_to_existing_dirs_only(self, tmp_path):
        existing = tmp_path / "a"
        existing.mkdir()
        lock = SkilldLock(skills={"vue": SkillInfo(package_name="vue", version="3.4.0")})

        written = sync_lockfiles_to_dirs(lock, [existing, tmp_path / "missing"])

        assert written == [existing / LOCK_FILENAME]
        assert read_lock(existing) == lock


def test_parse_skill_frontmatter(tmp_path):
    skill = tmp_path / "SKILL.md"
    skill.write_text(
        "---\n"
        "name: vue\n"
        'packageName: "@vue/core"\n'
        "version: 3.4.0\n"
        "syncedAt: 2024-05-01\n"
        "---\n\n# Vue\n"
    )
    info = parse_skill_frontmatter(skill)
    assert info.package_name == "@vue/core"
    assert info.version == "3.4.0"
    assert info.synced_at == "2024-05-01"
    assert parse_skill_frontmatter(tmp_path / "missing.md") is None


def test_recover_lock_adds_unrecorded_skills(tmp_path):
    write_lock(tmp_path, "vue", SkillInfo(package_name="vue", version="3.4.0"))
    for name, frontmatter in {
        "vue": "packageName: vue\nversion: 3.3.0\n",
        "react": "packageName: react\nversion: 18.2.0\n",
        "notes": "name: notes\n",
    }.items():
        (tmp_path / name).mkdir()
        (tmp_path / name / "SKILL.md").write_text(f"---\n{frontmatter}---\n\n# {name}\n")
    (tmp_path / "empty").mkdir()

    lock = recover_lock(tmp_path)

    assert set(lock.skills) == {"vue", "react"}
    assert lock.skills["vue"].version == "3.4.0"
    assert lock.skills["react"].version == "18.2.0"
    assert recover_lock(tmp_path / "missing") == SkilldLock()
