import unittest
import sys
import os
import shutil
import tempfile
from unittest.mock import patch, Mock

import requests

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from sodascan.errors import ScanValidationError
from sodascan.storage import InternalStorage, resolve_input_files, write_files


class TestInternalStorage(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.mkdtemp()
        self.storage = InternalStorage(os.path.join(self.tmp, "storage"))
        self.source = os.path.join(self.tmp, "data.csv")
        with open(self.source, "w") as f:
            f.write("id,amount\n1,10\n")

    def tearDown(self):
        shutil.rmtree(self.tmp, ignore_errors=True)

    def test_put_and_get(self):
        uri = self.storage.put_file(self.source, "data.csv", namespace="run1")
        self.assertEqual(uri, "storage:///run1/data.csv")
        with open(self.storage.get_file(uri)) as f:
            self.assertEqual(f.read(), "id,amount\n1,10\n")

    def test_unknown_uri(self):
        with self.assertRaises(FileNotFoundError):
            self.storage.get_file("storage:///run1/nothing.csv")
        with self.assertRaises(FileNotFoundError):
            self.storage.get_file("s3://bucket/data.csv")

    def test_uri_cannot_escape_base(self):
        with self.assertRaises(FileNotFoundError):
            self.storage.get_file("storage:///../data.csv")

    def test_resolve_from_storage(self):
        uri = self.storage.put_file(self.source, "data.csv")
        files = resolve_input_files({"inputs/data.csv": uri, "note.txt": "inline"}, self.storage)
        self.assertEqual(files, {"inputs/data.csv": "id,amount\n1,10\n", "note.txt": "inline"})

    @patch('sodascan.storage.requests.get')
    def test_resolve_from_url(self, mock_get):
        mock_response = Mock()
        mock_response.text = "select 1"
        mock_get.return_value = mock_response

        files = resolve_input_files({"query.sql": "https://example.com/query.sql"})

        self.assertEqual(files, {"query.sql": "select 1"})
        mock_get.assert_called_once_with("https://example.com/query.sql", timeout=30.0)
        mock_response.raise_for_status.assert_called_once()

    @patch('sodascan.storage.requests.get')
    def test_url_errors_propagate(self, mock_get):
        mock_response = Mock()
        mock_response.raise_for_status.side_effect = requests.HTTPError("404 Client Error")
        mock_get.return_value = mock_response

        with self.assertRaises(requests.HTTPError):
            resolve_input_files({"query.sql": "https://example.com/missing.sql"})

    def test_non_string_content(self):
        with self.assertRaises(ScanValidationError):
            resolve_input_files({"a": 1})

    def test_write_files_nested(self):
        target = os.path.join(self.tmp, "work")
        os.makedirs(target)
        write_files(target, {"a/b/c.txt": "x"})
        self.assertTrue(os.path.isfile(os.path.join(target, "a", "b", "c.txt")))


if __name__ == '__main__':
    unittest.main()
