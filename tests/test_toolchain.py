import stat
import tempfile
import unittest
from pathlib import Path
from unittest import mock

import toolchain


class TestBinaryResolution(unittest.TestCase):
    def test_resolve_toolchain_uses_path(self):
        def fake_which(command: str):
            return f"/usr/bin/{command}"

        with mock.patch("toolchain.shutil.which", side_effect=fake_which):
            resolved = toolchain.resolve_toolchain()

        self.assertEqual(resolved, toolchain.Toolchain("/usr/bin/ffmpeg", "/usr/bin/ffprobe"))

    def test_missing_binaries_are_listed(self):
        with mock.patch("toolchain.shutil.which", return_value=None):
            with self.assertRaises(FileNotFoundError) as ctx:
                toolchain.resolve_toolchain()
        self.assertIn("ffmpeg, ffprobe", str(ctx.exception))

    def test_custom_path_wins_over_path(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            custom = Path(temp_dir) / "ffmpeg-static"
            custom.write_text("#!/bin/sh\nexit 0\n")
            custom.chmod(custom.stat().st_mode | stat.S_IEXEC)

            with mock.patch("toolchain.shutil.which", return_value="/usr/bin/ffprobe"):
                resolved = toolchain.resolve_toolchain(ffmpeg_path=str(custom))

        self.assertEqual(resolved.ffmpeg, str(custom.resolve()))
        self.assertEqual(resolved.ffprobe, "/usr/bin/ffprobe")

    def test_missing_custom_path_raises(self):
        with self.assertRaises(FileNotFoundError):
            toolchain.resolve_toolchain(ffmpeg_path="/nonexistent/ffmpeg")


class TestRunSubprocess(unittest.TestCase):
    def test_undecodable_output_is_replaced(self):
        with mock.patch("toolchain.subprocess.run") as run_mock:
            toolchain.run_subprocess(["ffmpeg", "-version"], capture_output=True, cwd=Path("/tmp"))

        kwargs = run_mock.call_args.kwargs
        self.assertTrue(kwargs["text"])
        self.assertEqual(kwargs["errors"], "replace")
        self.assertEqual(kwargs["cwd"], "/tmp")


class TestTracing(unittest.TestCase):
    def test_traced_decorator_preserves_function_name(self):
        @toolchain._traced
        def example_function():
            return 42

        self.assertEqual(example_function.__name__, "example_function")
        self.assertEqual(example_function(), 42)


if __name__ == "__main__":
    unittest.main()
