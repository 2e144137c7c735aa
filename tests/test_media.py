import json
import subprocess
import unittest
from pathlib import Path
from unittest import mock

import media
from media import AudioCandidate, BaseMedia, MergeSession
from orchestrator import RenderResult


def ffprobe_result(payload) -> subprocess.CompletedProcess:
    return subprocess.CompletedProcess(args=[], returncode=0, stdout=json.dumps(payload), stderr="")


VIDEO_PAYLOAD = {
    "streams": [
        {"codec_type": "video", "width": 1920, "height": 1080, "duration": "74.9"},
        {"codec_type": "audio", "codec_name": "aac"},
    ],
    "format": {"duration": "75.5"},
}

AUDIO_WITH_COVER_PAYLOAD = {
    "streams": [
        {"codec_type": "audio", "codec_name": "mp3", "duration": "212.4"},
        {"codec_type": "video", "width": 600, "height": 600, "disposition": {"attached_pic": 1}},
    ],
    "format": {},
}


class TestProbe(unittest.TestCase):
    def test_probe_reads_dimensions_and_format_duration(self):
        with mock.patch("media.run_subprocess", return_value=ffprobe_result(VIDEO_PAYLOAD)) as run_mock:
            info = media.probe_media("ffprobe", Path("/tmp/clip.mp4"))

        self.assertEqual((info.width, info.height), (1920, 1080))
        self.assertEqual(info.duration_seconds, 75.5)
        self.assertTrue(info.has_video)
        self.assertTrue(info.has_audio)
        cmd = run_mock.call_args.args[0]
        self.assertEqual(cmd[0], "ffprobe")
        self.assertEqual(cmd[-1], "/tmp/clip.mp4")

    def test_cover_art_is_not_a_video_stream(self):
        with mock.patch("media.run_subprocess", return_value=ffprobe_result(AUDIO_WITH_COVER_PAYLOAD)):
            info = media.probe_media("ffprobe", Path("/tmp/song.mp3"))

        self.assertFalse(info.has_video)
        self.assertTrue(info.has_audio)
        self.assertEqual(info.duration_seconds, 212.4)

    def test_invalid_json_raises(self):
        bad = subprocess.CompletedProcess(args=[], returncode=0, stdout="not json", stderr="")
        with mock.patch("media.run_subprocess", return_value=bad):
            with self.assertRaises(RuntimeError):
                media.probe_media("ffprobe", Path("/tmp/clip.mp4"))

    def test_load_base_media_requires_video(self):
        with mock.patch("media.run_subprocess", return_value=ffprobe_result(AUDIO_WITH_COVER_PAYLOAD)):
            with self.assertRaises(ValueError):
                media.load_base_media("ffprobe", Path("/tmp/song.mp3"))

    def test_load_audio_candidate(self):
        with mock.patch("media.run_subprocess", return_value=ffprobe_result(AUDIO_WITH_COVER_PAYLOAD)):
            track = media.load_audio_candidate("ffprobe", Path("/tmp/song.mp3"))

        self.assertEqual(track.name, "song.mp3")
        self.assertEqual(track.duration, 212.4)
        self.assertEqual(track.start_offset, 0.0)
        self.assertEqual(len(track.id), 9)
        self.assertEqual(track.suffix, ".mp3")

    def test_load_audio_candidate_requires_audio(self):
        payload = {"streams": [{"codec_type": "video", "width": 10, "height": 10}], "format": {"duration": "5"}}
        with mock.patch("media.run_subprocess", return_value=ffprobe_result(payload)):
            with self.assertRaises(ValueError):
                media.load_audio_candidate("ffprobe", Path("/tmp/silent.mp4"))


class TestDescriptors(unittest.TestCase):
    def test_base_media_rejects_bad_dimensions(self):
        with self.assertRaises(ValueError):
            BaseMedia(source=b"v", duration=60.0, width=0, height=1080)
        with self.assertRaises(ValueError):
            BaseMedia(source=b"v", duration=0.0, width=1920, height=1080)

    def test_read_source_accepts_bytes(self):
        self.assertEqual(media.read_source(b"abc"), b"abc")

    def test_window_fits(self):
        track = AudioCandidate(id="a", source=b"x", name="a.mp3", duration=100.0, start_offset=40.0)
        self.assertTrue(track.window_fits(60.0))
        self.assertFalse(track.window_fits(60.5))
        self.assertEqual(track.max_offset(60.0), 40.0)
        self.assertEqual(track.max_offset(120.0), 0.0)


class TestMergeSession(unittest.TestCase):
    def setUp(self):
        self.base = BaseMedia(source=b"video", duration=65.0, width=1920, height=1080)
        self.session = MergeSession(base=self.base)

    def make_track(self, track_id="a", duration=120.0):
        return AudioCandidate(id=track_id, source=b"x", name=f"{track_id}.mp3", duration=duration)

    def test_short_video_is_rejected(self):
        short = BaseMedia(source=b"video", duration=30.0, width=1920, height=1080)
        with self.assertRaises(ValueError):
            MergeSession(base=short)
        MergeSession(base=short, min_video_duration=0)

    def test_short_track_is_rejected(self):
        with self.assertRaises(ValueError) as ctx:
            self.session.add_track(self.make_track(duration=64.0))
        self.assertIn("too short", str(ctx.exception))
        self.assertEqual(self.session.tracks, [])

    def test_track_exactly_as_long_as_video_is_accepted(self):
        self.session.add_track(self.make_track(duration=65.0))
        self.assertEqual(len(self.session.tracks), 1)

    def test_duplicate_ids_are_rejected(self):
        self.session.add_track(self.make_track("a"))
        with self.assertRaises(ValueError):
            self.session.add_track(self.make_track("a"))

    def test_update_offset_within_window(self):
        self.session.add_track(self.make_track("a"))
        track = self.session.update_track_offset("a", 55.0)
        self.assertEqual(track.start_offset, 55.0)
        self.assertTrue(track.window_fits(self.base.duration))

    def test_update_offset_out_of_range(self):
        self.session.add_track(self.make_track("a"))
        for offset in (-1.0, 55.5):
            with self.subTest(offset=offset):
                with self.assertRaises(ValueError):
                    self.session.update_track_offset("a", offset)
        self.assertEqual(self.session.get_track("a").start_offset, 0.0)

    def test_unknown_track(self):
        with self.assertRaises(KeyError):
            self.session.update_track_offset("missing", 1.0)

    def test_mutation_blocked_while_rendering(self):
        self.session.add_track(self.make_track("a"))
        self.session.rendering = True
        with self.assertRaises(RuntimeError):
            self.session.update_track_offset("a", 1.0)
        with self.assertRaises(RuntimeError):
            self.session.remove_track("a")

    def test_remove_and_reset(self):
        self.session.add_track(self.make_track("a"))
        self.session.add_track(self.make_track("b"))
        self.session.remove_track("a")
        self.assertEqual([t.id for t in self.session.tracks], ["b"])

        self.session.results.append(RenderResult("b", "b.mp3", b"mp4", 65.0, 0.0))
        self.assertEqual(self.session.results[0].suggested_filename(), "merged-b.mp4")
        self.session.reset()
        self.assertEqual(self.session.tracks, [])
        self.assertEqual(self.session.results, [])


if __name__ == "__main__":
    unittest.main()
