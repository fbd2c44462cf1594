"""Tests for the Santa-based macOS signing inspector.

santactl is never invoked: ``_utils.run`` is patched to return canned output.
"""

import json
import plistlib
import tempfile
import unittest
import unittest.mock as mock
from pathlib import Path

from maintained_apps.config.collector_config import CollectorConfig
from maintained_apps.errors import ParseError, UnsignedOrUninspectableError
from maintained_apps.installers.base import CommandResult
from maintained_apps.signing import inspector_for
from maintained_apps.signing.macos import (
    MacOSSigningInspector,
    parse_free_text,
    parse_structured,
    resolve_executable,
)
from maintained_apps.models.schema import Platform

RUN = "maintained_apps.installers.macos._utils.run"

SANTA_JSON = json.dumps([{
    "Path": "/Applications/Firefox.app/Contents/MacOS/firefox",
    "SHA-256": "8d3a1f0c",
    "CDHash": "a1b2c3",
    "Signing ID": "43AQ936H96:org.mozilla.firefox",
    "Team ID": "43AQ936H96",
    "Rule": "Allowed (Unknown)",
}])

SANTA_TEXT = """\
Path                   : /Applications/Firefox.app/Contents/MacOS/firefox
SHA-256                : 8d3a1f0c
SHA-1                  : 0011
Bundle Name            : Firefox
Code-signed            : Yes
Rule                   : Allowed (Unknown)
Signing ID             : 43AQ936H96:org.mozilla.firefox
CDHash                 : a1b2c3
Team ID                : 43AQ936H96
"""


def make_bundle(root: Path, name: str = "Firefox.app", executable: str = "firefox", declare: bool = True) -> Path:
    bundle = root / name
    macos_dir = bundle / "Contents" / "MacOS"
    macos_dir.mkdir(parents=True)
    (macos_dir / executable).write_bytes(b"\xcf\xfa\xed\xfe")
    if declare:
        with open(bundle / "Contents" / "Info.plist", "wb") as fh:
            plistlib.dump({"CFBundleExecutable": executable}, fh)
    return bundle


class TestParsers(unittest.TestCase):
    def test_structured(self):
        fields = parse_structured(SANTA_JSON)
        self.assertEqual(fields, {
            "sha256": "8d3a1f0c",
            "code_directory_hash": "a1b2c3",
            "signing_identifier": "43AQ936H96:org.mozilla.firefox",
            "team_identifier": "43AQ936H96",
        })

    def test_structured_nested_signing_info(self):
        fields = parse_structured(json.dumps([{"SHA-256": "ff", "SigningInfo": {"SigningID": "X:y", "TeamID": "X"}}]))
        self.assertEqual(fields["signing_identifier"], "X:y")
        self.assertEqual(fields["team_identifier"], "X")

    def test_rule_only_record_is_no_data(self):
        self.assertEqual(parse_structured(json.dumps([{"Rule": "Allowed (Unknown)"}])), {})
        self.assertEqual(parse_structured("[]"), {})

    def test_malformed_json(self):
        with self.assertRaises(ParseError):
            parse_structured("[{not json")

    def test_free_text_keys_are_case_insensitive(self):
        fields = parse_free_text("sha-256: AA\nteam id : T1\nSIGNING ID: T1:com.acme\ncdhash: 0f\n")
        self.assertEqual(fields, {
            "sha256": "AA",
            "team_identifier": "T1",
            "signing_identifier": "T1:com.acme",
            "code_directory_hash": "0f",
        })

    def test_free_text_ignores_unknown_keys(self):
        self.assertEqual(parse_free_text("Rule : Allowed\nBundle Name : Foo\n"), {})


class TestResolveExecutable(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)

    def tearDown(self):
        self._tmp.cleanup()

    def test_declared_executable(self):
        bundle = make_bundle(self.root)
        (bundle / "Contents" / "MacOS" / "aaa-helper").write_bytes(b"x")
        self.assertEqual(resolve_executable(bundle).name, "firefox")

    def test_falls_back_to_first_file(self):
        bundle = make_bundle(self.root, executable="zed", declare=False)
        (bundle / "Contents" / "MacOS" / ".DS_Store").write_bytes(b"x")
        self.assertEqual(resolve_executable(bundle).name, "zed")

    def test_plain_file_is_returned(self):
        binary = self.root / "tool"
        binary.write_bytes(b"x")
        self.assertEqual(resolve_executable(binary), binary)

    def test_empty_bundle(self):
        bundle = self.root / "Empty.app"
        (bundle / "Contents" / "MacOS").mkdir(parents=True)
        with self.assertRaises(UnsignedOrUninspectableError):
            resolve_executable(bundle)


class TestInspector(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        self.bundle = make_bundle(self.root)
        self.config = CollectorConfig(
            catalog_path=self.root / "c.json",
            security_info_path=self.root / "s.json",
            scratch_dir=self.root / "scratch",
            santactl="/usr/local/bin/santactl",
            inspect_attempts=3,
            inspect_delay=5,
            inspect_backoff=2,
        )
        self.waits = []
        self.inspector = MacOSSigningInspector(self.config)
        self.inspector.sleep = self.waits.append

    def tearDown(self):
        self._tmp.cleanup()

    def test_factory(self):
        self.assertIsInstance(inspector_for(Platform.MACOS, self.config), MacOSSigningInspector)

    def test_structured_success(self):
        with mock.patch(RUN, return_value=CommandResult(0, SANTA_JSON)) as run:
            fields = self.inspector.inspect(self.bundle)
        self.assertEqual(fields["team_identifier"], "43AQ936H96")
        cmd = run.call_args.args[0]
        self.assertEqual(cmd[:3], ["/usr/local/bin/santactl", "fileinfo", "--json"])
        self.assertTrue(cmd[3].endswith("Contents/MacOS/firefox"))
        self.assertEqual(self.waits, [])

    def test_free_text_fallback(self):
        def fake_run(cmd, timeout=600, input_text=None):
            if "--json" in cmd:
                return CommandResult(0, json.dumps([{"Rule": "Allowed"}]))
            return CommandResult(0, SANTA_TEXT)

        with mock.patch(RUN, side_effect=fake_run):
            fields = self.inspector.inspect(self.bundle)
        self.assertEqual(fields["code_directory_hash"], "a1b2c3")
        self.assertEqual(fields["sha256"], "8d3a1f0c")

    def test_retries_until_santa_has_data(self):
        outputs = iter([
            CommandResult(0, "[]"), CommandResult(0, ""),
            CommandResult(0, SANTA_JSON),
        ])
        with mock.patch(RUN, side_effect=lambda *a, **k: next(outputs)):
            fields = self.inspector.inspect(self.bundle)
        self.assertEqual(fields["sha256"], "8d3a1f0c")
        self.assertEqual(self.waits, [5])

    def test_all_strategies_exhausted(self):
        def fake_run(cmd, timeout=600, input_text=None):
            if "--json" in cmd:
                return CommandResult(0, "[]")
            return CommandResult(0, "Rule : Allowed (Unknown)")

        with mock.patch(RUN, side_effect=fake_run) as run:
            with self.assertRaises(UnsignedOrUninspectableError) as ctx:
                self.inspector.inspect(self.bundle)

        self.assertEqual(run.call_count, 6)
        self.assertEqual(self.waits, [5, 10])
        self.assertEqual(len(ctx.exception.reasons), 2)
        self.assertIn("json:", ctx.exception.reasons[0])
        self.assertIn("text:", ctx.exception.reasons[1])

    def test_malformed_json_then_text(self):
        def fake_run(cmd, timeout=600, input_text=None):
            if "--json" in cmd:
                return CommandResult(0, "{oops")
            return CommandResult(0, SANTA_TEXT)

        with mock.patch(RUN, side_effect=fake_run):
            fields = self.inspector.inspect(self.bundle)
        self.assertEqual(fields["team_identifier"], "43AQ936H96")

    def test_santactl_missing(self):
        with mock.patch(RUN, return_value=CommandResult(-1, "", "santactl: not found")):
            with self.assertRaises(UnsignedOrUninspectableError) as ctx:
                self.inspector.inspect(self.bundle)
        self.assertIn("not found", str(ctx.exception))


if __name__ == "__main__":
    unittest.main()
