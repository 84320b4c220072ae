import unittest
from types import SimpleNamespace
from unittest import mock

import numpy as np
import rawpy

from x3f_extract import processing
from x3f_extract.core import ColorEncoding
from x3f_extract.config import x3f_version


def fake_raw(full, visible=None, developed=None):
    raw = SimpleNamespace()
    raw.raw_image = full
    raw.raw_image_visible = full[1:-1, 1:-1] if visible is None else visible
    raw.postprocess = mock.Mock(return_value=developed)
    return raw


class TestFixBadPixels(unittest.TestCase):
    def test_hot_pixel_in_stacked_planes(self):
        img = np.full((5, 5, 3), 100, dtype=np.uint16)
        img[2, 2, 1] = 5000
        fixed = processing.fix_bad_pixels(img)
        self.assertEqual(fixed, 1)
        self.assertEqual(img[2, 2, 1], 100)
        self.assertTrue((img == 100).all())

    def test_dead_pixel_in_lit_area(self):
        img = np.full((4, 4, 3), 300, dtype=np.uint16)
        img[1, 2, 0] = 0
        self.assertEqual(processing.fix_bad_pixels(img), 1)
        self.assertEqual(img[1, 2, 0], 300)

    def test_bayer_mosaic_uses_same_colour_neighbours(self):
        img = np.full((8, 8), 300, dtype=np.uint16)
        img[1::2, :] = 2000  # alternate rows of a different colour
        img[4, 4] = 4000
        self.assertEqual(processing.fix_bad_pixels(img), 1)
        self.assertEqual(img[4, 4], 300)
        self.assertEqual(img[5, 4], 2000)

    def test_clean_image_is_untouched(self):
        img = np.arange(48, dtype=np.uint16).reshape(4, 4, 3) * 10 + 500
        before = img.copy()
        self.assertEqual(processing.fix_bad_pixels(img), 0)
        np.testing.assert_array_equal(img, before)

    def test_dark_area_is_never_classified(self):
        img = np.full((4, 4, 3), 5, dtype=np.uint16)
        img[2, 2, 2] = 60
        self.assertEqual(processing.fix_bad_pixels(img), 0)


class TestLegacyOffset(unittest.TestCase):
    def test_positive_offset_saturates(self):
        img = np.array([10, 65530], dtype=np.uint16)
        processing.apply_legacy_offset(img, 10)
        np.testing.assert_array_equal(img, [20, 65535])

    def test_negative_offset_clips_at_zero(self):
        img = np.array([10, 1000], dtype=np.uint16)
        processing.apply_legacy_offset(img, -20)
        np.testing.assert_array_equal(img, [0, 980])


class TestWhiteBalance(unittest.TestCase):
    def test_known_presets(self):
        for preset in processing.WHITE_BALANCE_PRESETS:
            self.assertEqual(processing.validate_white_balance(preset), preset)
        self.assertIsNone(processing.validate_white_balance(None))

    def test_unknown_preset(self):
        with self.assertRaises(ValueError):
            processing.validate_white_balance("Moonlight")


class TestDevelopSensorDumps(unittest.TestCase):
    def setUp(self):
        self.full = np.arange(5 * 6 * 3, dtype=np.uint16).reshape(5, 6, 3)

    def test_unprocessed_cropped(self):
        raw = fake_raw(self.full)
        img = processing.develop(raw, ColorEncoding.UNPROCESSED, crop=True)
        np.testing.assert_array_equal(img, self.full[1:-1, 1:-1])
        raw.postprocess.assert_not_called()

    def test_unprocessed_full_area_is_a_copy(self):
        raw = fake_raw(self.full)
        img = processing.develop(raw, ColorEncoding.UNPROCESSED, crop=False)
        np.testing.assert_array_equal(img, self.full)
        img[0, 0, 0] = 999
        self.assertEqual(self.full[0, 0, 0], 0)

    def test_qtop_needs_quattro(self):
        with self.assertRaises(ValueError):
            processing.develop(fake_raw(self.full), ColorEncoding.QTOP, version=x3f_version(3, 0))

    def test_qtop_takes_top_layer(self):
        img = processing.develop(fake_raw(self.full), ColorEncoding.QTOP, crop=False,
                                 version=x3f_version(4, 0))
        np.testing.assert_array_equal(img, self.full[..., 0])


class TestDevelopProcessed(unittest.TestCase):
    def setUp(self):
        self.full = np.full((4, 4, 3), 1000, dtype=np.uint16)
        self.developed = np.full((2, 2, 3), 32768, dtype=np.uint16)

    def test_srgb_is_converted_from_linear_prophoto(self):
        raw = fake_raw(self.full, developed=self.developed)
        img = processing.develop(raw, ColorEncoding.SRGB, fix_bad=False)
        kwargs = raw.postprocess.call_args.kwargs
        self.assertEqual(kwargs['output_color'], rawpy.ColorSpace.ProPhoto)
        self.assertEqual(kwargs['gamma'], (1, 1))
        self.assertEqual(kwargs['output_bps'], 16)
        self.assertTrue(kwargs['use_camera_wb'])
        self.assertFalse(kwargs['use_auto_wb'])
        self.assertEqual(img.dtype, np.uint16)
        self.assertEqual(img.shape, (2, 2, 3))

    def test_linear_returns_decoder_output(self):
        raw = fake_raw(self.full, developed=self.developed)
        img = processing.develop(raw, ColorEncoding.PPRGB, fix_bad=False, linear=True)
        self.assertIs(img, self.developed)

    def test_none_stays_in_camera_space(self):
        raw = fake_raw(self.full, developed=self.developed)
        processing.develop(raw, ColorEncoding.NONE, fix_bad=False)
        kwargs = raw.postprocess.call_args.kwargs
        self.assertEqual(kwargs['output_color'], rawpy.ColorSpace.raw)
        self.assertTrue(kwargs['no_auto_scale'])

    def test_auto_white_balance_and_denoise(self):
        raw = fake_raw(self.full, developed=self.developed)
        processing.develop(raw, ColorEncoding.NONE, fix_bad=False, denoise=False, wb='Auto')
        kwargs = raw.postprocess.call_args.kwargs
        self.assertTrue(kwargs['use_auto_wb'])
        self.assertFalse(kwargs['use_camera_wb'])
        self.assertEqual(kwargs['fbdd_noise_reduction'], rawpy.FBDDNoiseReductionMode.Off)

    def test_accelerated_selects_fast_demosaic(self):
        raw = fake_raw(self.full, developed=self.developed)
        processing.develop(raw, ColorEncoding.NONE, fix_bad=False, accelerated=True)
        kwargs = raw.postprocess.call_args.kwargs
        self.assertEqual(kwargs['demosaic_algorithm'], rawpy.DemosaicAlgorithm.LINEAR)

    def test_legacy_offset_only_for_old_containers(self):
        raw = fake_raw(self.full.copy(), developed=self.developed)
        processing.develop(raw, ColorEncoding.NONE, fix_bad=False, legacy_offset=5,
                           version=x3f_version(2, 1))
        self.assertTrue((raw.raw_image == 1005).all())

        raw = fake_raw(self.full.copy(), developed=self.developed)
        processing.develop(raw, ColorEncoding.NONE, fix_bad=False, legacy_offset=5,
                           version=x3f_version(3, 0))
        self.assertTrue((raw.raw_image == 1000).all())

    def test_bad_pixels_fixed_before_decoding(self):
        full = self.full.copy()
        full[2, 2, 0] = 60000
        raw = fake_raw(full, developed=self.developed)
        processing.develop(raw, ColorEncoding.NONE, fix_bad=True)
        self.assertEqual(raw.raw_image[2, 2, 0], 1000)

    def test_unknown_white_balance_fails_before_decoding(self):
        raw = fake_raw(self.full, developed=self.developed)
        with self.assertRaises(ValueError):
            processing.develop(raw, ColorEncoding.SRGB, wb="Moonlight")
        raw.postprocess.assert_not_called()


if __name__ == "__main__":
    unittest.main()
