"""
Configuration Tests
Backend selection is validated up front and drives build_services()
"""
import os
import sys
import tempfile
import unittest
from unittest.mock import patch

SRC_DIR = os.path.join(os.path.dirname(__file__), '..', 'src')
if os.path.abspath(SRC_DIR) not in sys.path:
    sys.path.insert(0, os.path.abspath(SRC_DIR))

import config
from order_intake.image_store import LocalImageStore
from order_intake.services import (
    HttpCatalogService,
    HttpIdentityService,
    HttpInterpreterService,
    HttpOrderPersistence,
    NominatimGeocoder,
    OpenCageGeocoder,
    build_services,
)


class TestValidateConfig(unittest.TestCase):
    def test_http_backends_with_nominatim_are_valid(self):
        with patch.multiple(config, INTERPRETER_SOURCE='http', CATALOG_SOURCE='http',
                            ORDER_BACKEND='http', GEOCODER_PROVIDER='nominatim'):
            self.assertTrue(config.validate_config())

    def test_unknown_backend_listed(self):
        with patch.multiple(config, INTERPRETER_SOURCE='carrier-pigeon', CATALOG_SOURCE='http',
                            ORDER_BACKEND='http', GEOCODER_PROVIDER='nominatim'):
            with self.assertRaises(ValueError) as ctx:
                config.validate_config()
        self.assertIn("INTERPRETER_SOURCE", str(ctx.exception))

    def test_gemini_needs_api_key(self):
        with patch.multiple(config, INTERPRETER_SOURCE='gemini', GOOGLE_API_KEY=None,
                            CATALOG_SOURCE='http', ORDER_BACKEND='http', GEOCODER_PROVIDER='nominatim'):
            with self.assertRaises(ValueError) as ctx:
                config.validate_config()
        self.assertIn("GOOGLE_API_KEY", str(ctx.exception))

    def test_opencage_needs_api_key(self):
        with patch.multiple(config, INTERPRETER_SOURCE='http', CATALOG_SOURCE='http',
                            ORDER_BACKEND='http', GEOCODER_PROVIDER='opencage', OPENCAGE_API_KEY=None):
            with self.assertRaises(ValueError) as ctx:
                config.validate_config()
        self.assertIn("OPENCAGE_API_KEY", str(ctx.exception))


class TestBuildServices(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()

    def tearDown(self):
        self.tmp.cleanup()

    def test_http_wiring(self):
        with patch.multiple(config, INTERPRETER_SOURCE='http', CATALOG_SOURCE='http',
                            ORDER_BACKEND='http', GEOCODER_PROVIDER='nominatim',
                            IMAGE_FOLDER=self.tmp.name):
            services = build_services()

        self.assertIsInstance(services.interpreter, HttpInterpreterService)
        self.assertIsInstance(services.catalog, HttpCatalogService)
        self.assertIsInstance(services.persistence, HttpOrderPersistence)
        self.assertIsInstance(services.geocoder, NominatimGeocoder)
        self.assertIsInstance(services.image_store, LocalImageStore)
        self.assertIsInstance(services.identity, HttpIdentityService)

    def test_opencage_selected(self):
        with patch.multiple(config, INTERPRETER_SOURCE='http', CATALOG_SOURCE='http',
                            ORDER_BACKEND='http', GEOCODER_PROVIDER='opencage',
                            OPENCAGE_API_KEY='key', IMAGE_FOLDER=self.tmp.name):
            services = build_services()
        self.assertIsInstance(services.geocoder, OpenCageGeocoder)

    def test_invalid_config_builds_nothing(self):
        with patch.multiple(config, ORDER_BACKEND='fax', GEOCODER_PROVIDER='nominatim'):
            with self.assertRaises(ValueError):
                build_services()


if __name__ == "__main__":
    unittest.main()
