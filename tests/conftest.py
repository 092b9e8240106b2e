from dotenv import load_dotenv
load_dotenv()  # ensures local .env overrides are visible to pytest
import io
import tarfile
import warnings

import pytest
import requests

warnings.filterwarnings(
    "ignore",
    message=r"on_event is deprecated, use lifespan event handlers instead\.",
    category=DeprecationWarning,
    module=r"fastapi\..*",
)


class _Resp:
    def __init__(self, status_code=200, content=b"", text="", json_obj=None):
        self.status_code = status_code
        self.content = content
        self.text = text
        self._json = json_obj
        self.reason = "OK" if status_code < 400 else "Error"
        self.headers = {}

    def json(self):
        if self._json is None:
            raise ValueError("No JSON")
        return self._json

    def iter_content(self, chunk_size=1):
        for i in range(0, len(self.content), chunk_size):
            yield self.content[i : i + chunk_size]

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(response=self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


def _build_tarball(files=None, dirs=(), symlinks=None) -> bytes:
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w:gz") as tf:
        for name in dirs:
            info = tarfile.TarInfo(name)
            info.type = tarfile.DIRTYPE
            info.mode = 0o755
            tf.addfile(info)
        for name, data in (files or {}).items():
            if isinstance(data, str):
                data = data.encode()
            info = tarfile.TarInfo(name)
            info.size = len(data)
            tf.addfile(info, io.BytesIO(data))
        for name, target in (symlinks or {}).items():
            info = tarfile.TarInfo(name)
            info.type = tarfile.SYMTYPE
            info.linkname = target
            tf.addfile(info)
    return buf.getvalue()


@pytest.fixture
def fake_response():
    return _Resp


@pytest.fixture
def build_tarball():
    return _build_tarball
