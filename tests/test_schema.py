"""Tests for the Pydantic v2 schema models.

Run with:  python -m pytest tests/  or  python -m unittest discover tests/
"""

import unittest

from pydantic import ValidationError

from maintained_apps.models.schema import (
    Catalog,
    CatalogEntry,
    Platform,
    SecurityInfoStore,
    SecurityRecord,
    VersionChange,
    normalize_platform,
)


class TestPlatform(unittest.TestCase):
    def test_darwin_is_macos(self):
        self.assertIs(normalize_platform("darwin"), Platform.MACOS)
        self.assertIs(normalize_platform(" Windows "), Platform.WINDOWS)

    def test_unknown_and_empty(self):
        self.assertIsNone(normalize_platform("linux"))
        self.assertIsNone(normalize_platform(""))
        self.assertIsNone(normalize_platform(None))


class TestCatalog(unittest.TestCase):
    def test_entry_reads_wire_keys(self):
        entry = CatalogEntry.model_validate({
            "slug": "firefox/darwin",
            "name": "Firefox",
            "platform": "darwin",
            "version": "125.0",
            "installerUrl": "https://example.com/Firefox.dmg",
        })
        self.assertEqual(entry.installer_url, "https://example.com/Firefox.dmg")
        self.assertIs(entry.target_platform, Platform.MACOS)

    def test_raw_platform_is_kept_on_dump(self):
        entry = CatalogEntry(slug="a/darwin", platform="darwin")
        self.assertEqual(entry.model_dump(by_alias=True)["platform"], "darwin")

    def test_duplicate_slugs_rejected(self):
        with self.assertRaises(ValidationError):
            Catalog.model_validate({"apps": [{"slug": "a"}, {"slug": "a"}]})

    def test_slugs(self):
        catalog = Catalog.model_validate({"lastUpdated": "x", "apps": [{"slug": "a"}, {"slug": "b"}]})
        self.assertEqual(catalog.slugs(), {"a", "b"})


class TestSecurityRecord(unittest.TestCase):
    def test_unset_fields_are_omitted(self):
        record = SecurityRecord(slug="a", name="A", version="1", sha256="ff", collected_at="t")
        data = record.to_json_dict()
        self.assertEqual(data, {"slug": "a", "name": "A", "version": "1", "sha256": "ff", "lastUpdated": "t"})

    def test_macos_fields_use_wire_names(self):
        record = SecurityRecord(
            slug="a", code_directory_hash="cd", signing_identifier="TEAM:com.a", team_identifier="TEAM",
        )
        data = record.to_json_dict()
        self.assertEqual(data["cdhash"], "cd")
        self.assertEqual(data["signingId"], "TEAM:com.a")
        self.assertEqual(data["teamId"], "TEAM")

    def test_suite_members_nest_under_apps(self):
        record = SecurityRecord(
            slug="office/darwin",
            sub_entries=[SecurityRecord(slug="office/darwin/Word", sha256="01")],
        )
        data = record.to_json_dict()
        self.assertEqual(data["apps"], [{"slug": "office/darwin/Word", "version": "", "name": "", "sha256": "01", "lastUpdated": ""}])

    def test_suite_round_trip_from_wire(self):
        record = SecurityRecord.model_validate({"slug": "s", "apps": [{"slug": "s/x", "cdhash": "1"}]})
        self.assertEqual(record.sub_entries[0].code_directory_hash, "1")

    def test_unknown_keys_survive(self):
        record = SecurityRecord.model_validate({"slug": "a", "notes": "kept"})
        self.assertEqual(record.to_json_dict()["notes"], "kept")


class TestStoreAndHistory(unittest.TestCase):
    def test_store_by_slug(self):
        store = SecurityInfoStore.model_validate({"apps": [{"slug": "a"}, {"slug": "b"}]})
        self.assertEqual(sorted(store.by_slug()), ["a", "b"])

    def test_version_change_aliases(self):
        change = VersionChange(date="d", slug="a", old_version="1", new_version="2")
        data = change.model_dump(by_alias=True)
        self.assertEqual(data["oldVersion"], "1")
        self.assertEqual(data["newVersion"], "2")


if __name__ == "__main__":
    unittest.main()
