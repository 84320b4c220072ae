import errno
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from x3f_extract import core, orchestrator
from x3f_extract.config import ExtractConfig
from x3f_extract.core import SpatialGain
from x3f_extract.errors import EncodeFailure, ErrorKind, SectionLoadFailure
from x3f_extract.x3f import Section, X3FContainer

from .x3f_builder import JPEG_BYTES, RAW_PAYLOAD, RAW_QUATTRO, VERSION_2_3, VERSION_4_0, write_x3f


class OrchestratorTestCase(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)

    def tearDown(self):
        self._tmp.cleanup()

    def make(self, name="photo.x3f", **kwargs):
        return write_x3f(self.root / name, **kwargs)


class TestSectionDumpRuns(OrchestratorTestCase):
    def test_meta(self):
        path = self.make()
        run = orchestrator.process_files([path], core.build_request('meta'))
        self.assertEqual((run.files_processed, run.error_count, run.exit_code), (1, 0, 0))
        final = Path(path + ".meta")
        self.assertTrue(final.read_text().startswith("BEGIN: file header meta data"))
        self.assertFalse(Path(path + ".meta.tmp").exists())

    def test_jpeg(self):
        path = self.make()
        run = orchestrator.process_files([path], core.build_request('jpg'))
        self.assertEqual(run.exit_code, 0)
        self.assertEqual(Path(path + ".jpg").read_bytes(), JPEG_BYTES)

    def test_raw_block(self):
        path = self.make()
        run = orchestrator.process_files([path], core.build_request('raw'))
        self.assertEqual(run.exit_code, 0)
        self.assertEqual(Path(path + ".raw").read_bytes(), RAW_PAYLOAD)

    def test_output_directory(self):
        path = self.make()
        out_dir = self.root / "out"
        out_dir.mkdir()
        run = orchestrator.process_files([path], core.build_request('jpg', output_dir=str(out_dir)))
        self.assertEqual(run.exit_code, 0)
        self.assertTrue((out_dir / "photo.x3f.jpg").exists())
        self.assertFalse(Path(path + ".jpg").exists())

    def test_stale_tmp_file_is_replaced(self):
        path = self.make()
        Path(path + ".jpg.tmp").write_bytes(b"left over from a crash")
        run = orchestrator.process_files([path], core.build_request('jpg'))
        self.assertEqual(run.exit_code, 0)
        self.assertEqual(Path(path + ".jpg").read_bytes(), JPEG_BYTES)
        self.assertFalse(Path(path + ".jpg.tmp").exists())

    def test_existing_output_is_overwritten(self):
        path = self.make()
        Path(path + ".raw").write_bytes(b"old")
        orchestrator.process_files([path], core.build_request('raw'))
        self.assertEqual(Path(path + ".raw").read_bytes(), RAW_PAYLOAD)


class TestFailures(OrchestratorTestCase):
    def test_missing_input_is_open_failure(self):
        result = orchestrator.process_file(str(self.root / "absent.x3f"), core.build_request('meta'),
                                           ExtractConfig())
        self.assertFalse(result.succeeded)
        self.assertIs(result.error_kind, ErrorKind.OPEN_FAILURE)

    def test_missing_camf_is_section_load_failure(self):
        path = self.make(camf=None)
        result = orchestrator.process_file(path, core.build_request('meta'), ExtractConfig())
        self.assertIs(result.error_kind, ErrorKind.SECTION_LOAD_FAILURE)
        self.assertFalse(Path(path + ".meta").exists())

    def test_path_overflow_happens_before_open(self):
        path = self.make()
        request = core.build_request('meta', output_dir="/" + "x" * 5000)
        with mock.patch("x3f_extract.orchestrator.X3FContainer.open") as open_mock:
            result = orchestrator.process_file(path, request, ExtractConfig())
        self.assertIs(result.error_kind, ErrorKind.PATH_OVERFLOW)
        open_mock.assert_not_called()

    def test_rename_failure_counts_as_error(self):
        path = self.make()
        cross_device = OSError(errno.EXDEV, "Invalid cross-device link")
        with mock.patch("x3f_extract.orchestrator.os.replace", side_effect=cross_device):
            run = orchestrator.process_files([path], core.build_request('jpg'))
        self.assertEqual(run.error_count, 1)
        self.assertIs(run.results[0].error_kind, ErrorKind.RENAME_FAILURE)
        self.assertFalse(Path(path + ".jpg").exists())
        self.assertTrue(Path(path + ".jpg.tmp").exists())

    def test_encode_failure_leaves_no_final_file_and_run_continues(self):
        first = self.make("first.x3f")
        second = self.make("second.x3f")

        def encode(container, tmp_path, *args, **kwargs):
            Path(tmp_path).write_bytes(b"partial")
            if container.path == first:
                raise EncodeFailure("unsupported sensor layout")

        with mock.patch("x3f_extract.orchestrator.X3FContainer.load"), \
                mock.patch("x3f_extract.orchestrator.encoders.write_tiff", side_effect=encode):
            run = orchestrator.process_files([first, second], core.build_request('tiff'))

        self.assertEqual((run.files_processed, run.error_count, run.exit_code), (2, 1, 1))
        self.assertIs(run.results[0].error_kind, ErrorKind.ENCODE_FAILURE)
        self.assertFalse(Path(first + ".tif").exists())
        # the partial temp artifact is left for inspection
        self.assertTrue(Path(first + ".tif.tmp").exists())
        self.assertTrue(Path(second + ".tif").exists())

    def test_unremovable_stale_tmp_fails_only_that_file(self):
        first = self.make("first.x3f")
        second = self.make("second.x3f")
        Path(first + ".jpg.tmp").mkdir()

        run = orchestrator.process_files([first, second], core.build_request('jpg'))

        self.assertEqual((run.files_processed, run.error_count, run.exit_code), (2, 1, 1))
        self.assertIs(run.results[0].error_kind, ErrorKind.ENCODE_FAILURE)
        self.assertFalse(Path(first + ".jpg").exists())
        self.assertTrue(run.results[1].succeeded)
        self.assertEqual(Path(second + ".jpg").read_bytes(), JPEG_BYTES)

    def test_container_closed_on_failure(self):
        path = self.make(raw_payload=None)
        original_close = X3FContainer.close
        with mock.patch.object(X3FContainer, "close", autospec=True, side_effect=original_close) as close:
            result = orchestrator.process_file(path, core.build_request('raw'), ExtractConfig())
        self.assertIs(result.error_kind, ErrorKind.SECTION_LOAD_FAILURE)
        close.assert_called_once()

    def test_zero_files(self):
        run = orchestrator.process_files([], core.build_request())
        self.assertEqual(run.error_count, 0)
        self.assertTrue(run.no_files)
        self.assertEqual(run.exit_code, 1)


class TestLoadSections(unittest.TestCase):
    def loads(self, request, fail_on=None):
        container = mock.Mock(path="photo.x3f")
        if fail_on is not None:
            def load(section):
                if section is fail_on:
                    raise SectionLoadFailure("broken")
            container.load.side_effect = load
        try:
            orchestrator.load_sections(container, core.resolve_plan(request))
        except SectionLoadFailure:
            pass
        return [c.args[0] for c in container.load.call_args_list]

    def test_order_for_developed_output(self):
        self.assertEqual(self.loads(core.build_request('tiff')), [Section.METADATA, Section.RAW_DECODED])

    def test_preview_only(self):
        self.assertEqual(self.loads(core.build_request('jpg')), [Section.PREVIEW])

    def test_undecoded_raw_only(self):
        self.assertEqual(self.loads(core.build_request('raw')), [Section.RAW_UNDECODED])

    def test_unprocessed_uncropped_skips_metadata(self):
        request = core.build_request('ppm', 'unprocessed', crop=False)
        self.assertEqual(self.loads(request), [Section.RAW_DECODED])

    def test_first_failure_stops_loading(self):
        loaded = self.loads(core.build_request('dng'), fail_on=Section.METADATA)
        self.assertEqual(loaded, [Section.METADATA])

    def test_io_error_becomes_section_load_failure(self):
        container = mock.Mock(path="photo.x3f")
        container.load.side_effect = OSError(errno.EIO, "I/O error")
        with self.assertRaises(SectionLoadFailure):
            orchestrator.load_sections(container, core.resolve_plan(core.build_request('jpg')))


class TestDispatch(OrchestratorTestCase):
    def dispatch(self, path, request):
        with X3FContainer.open(path) as container, \
                mock.patch("x3f_extract.orchestrator.encoders") as encoders:
            orchestrator.dispatch(container, core.resolve_plan(request), "out.tmp",
                                  ExtractConfig(accelerated=True), mock.Mock())
        return encoders

    def test_spatial_gain_default_before_quattro(self):
        encoders = self.dispatch(self.make(version=VERSION_2_3), core.build_request('tiff'))
        sgain = encoders.write_tiff.call_args.args[6]
        self.assertTrue(sgain)

    def test_spatial_gain_default_for_quattro(self):
        path = self.make(version=VERSION_4_0, props=None, raw_type=RAW_QUATTRO)
        encoders = self.dispatch(path, core.build_request('dng'))
        sgain = encoders.write_dng.call_args.args[4]
        self.assertFalse(sgain)

    def test_forced_spatial_gain(self):
        path = self.make(version=VERSION_4_0, props=None, raw_type=RAW_QUATTRO)
        encoders = self.dispatch(path, core.build_request('histogram', spatial_gain=SpatialGain.ON))
        self.assertTrue(encoders.write_histogram.call_args.args[6])

    def test_exactly_one_encoder_is_called(self):
        expected = {
            'meta': 'dump_meta',
            'jpg': 'dump_jpeg',
            'raw': 'dump_raw_block',
            'tiff': 'write_tiff',
            'dng': 'write_dng',
            'ppm-ascii': 'write_ppm',
            'ppm': 'write_ppm',
            'histogram': 'write_histogram',
            'loghist': 'write_histogram',
        }
        path = self.make()
        names = set(expected.values())
        for fmt, name in expected.items():
            with self.subTest(fmt=fmt):
                encoders = self.dispatch(path, core.build_request(fmt))
                called = [n for n in names if getattr(encoders, n).called]
                self.assertEqual(called, [name])

    def test_ppm_binary_and_loghist_selectors(self):
        path = self.make()
        encoders = self.dispatch(path, core.build_request('ppm'))
        self.assertTrue(encoders.write_ppm.call_args.args[8])
        encoders = self.dispatch(path, core.build_request('ppm-ascii'))
        self.assertFalse(encoders.write_ppm.call_args.args[8])
        encoders = self.dispatch(path, core.build_request('loghist'))
        self.assertTrue(encoders.write_histogram.call_args.args[8])

    def test_config_is_threaded_to_encoders(self):
        path = self.make()
        encoders = self.dispatch(path, core.build_request('tiff', legacy_offset=-4))
        kwargs = encoders.write_tiff.call_args.kwargs
        self.assertEqual(kwargs['legacy_offset'], -4)
        self.assertTrue(kwargs['accelerated'])


if __name__ == "__main__":
    unittest.main()
