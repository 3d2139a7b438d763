import json
import os

import pytest

from vale_audit.blob_store import LocalBlobStore
from vale_audit.errors import ImageSourceError

GOOD_EXTRACTION = json.dumps({
    "numeroVale": {"valor": "123456", "confianza": 0.95},
    "placa": {"valor": "ABC123", "confianza": 0.9},
    "m3": {"valor": "16", "confianza": 0.92},
    "fecha": {"valor": "15/03/2025", "confianza": 0.88},
})

READABLE = json.dumps({"qualityScore": 9, "isReadable": True, "reason": ""})


class FakeOracle:
    """Scripted oracle: each queue item is returned, or raised when it is an exception"""

    def __init__(self, extract=None, quality=None):
        self.extract_queue = list(extract or [])
        self.quality_queue = list(quality or [])
        self.extract_calls = 0
        self.quality_calls = 0
        self.last_reference_values = None
        self.last_valid_plates = None

    @staticmethod
    def _next(queue, default):
        item = queue.pop(0) if queue else default
        if isinstance(item, Exception):
            raise item
        return item

    def extract(self, image, reference_values, valid_plates):
        self.extract_calls += 1
        self.last_reference_values = reference_values
        self.last_valid_plates = list(valid_plates)
        return self._next(self.extract_queue, GOOD_EXTRACTION)

    def check_quality(self, image):
        self.quality_calls += 1
        return self._next(self.quality_queue, READABLE)


class FakeImageSource:
    """In-memory image source keyed by file name"""

    def __init__(self, files, broken=()):
        self.files = dict(files)
        self.broken = set(broken)
        self.searched = []
        self.download_dirs = []

    def find_file_id(self, file_name):
        self.searched.append(file_name)
        if file_name in self.broken:
            raise ImageSourceError("Drive search failed: 500", file_name=file_name)
        return f"id-{file_name}" if file_name in self.files else None

    def download(self, file_id, local_dest):
        self.download_dirs.append(os.path.dirname(local_dest))
        with open(local_dest, "wb") as f:
            f.write(self.files[file_id[len("id-"):]])
        return local_dest


@pytest.fixture
def store(tmp_path):
    return LocalBlobStore(str(tmp_path / "bucket"))


@pytest.fixture
def date_path():
    return "2025/03/15"
