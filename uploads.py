import os
import re

import requests


class _UploadFailed:
    """Returned instead of a URL when a backend gives nothing usable."""

    def __bool__(self):
        return False

    def __repr__(self):
        return "UPLOAD_FAILED"


UPLOAD_FAILED = _UploadFailed()


class Uploader:
    """Base for a file-hosting backend.

    Subclasses implement ``_send`` (the HTTP call) and ``parse`` (turning a
    response body into a public URL, or ``None``).
    """

    name = None
    timeout = 300

    def __init__(self, session=None):
        self.http = session or requests

    def _send(self, path, f):
        raise NotImplementedError

    def parse(self, body):
        raise NotImplementedError

    def upload(self, path):
        print(f"Uploading to {self.name}: {path}")
        try:
            with open(path, "rb") as f:
                r = self._send(path, f)
        except (requests.RequestException, OSError, LookupError, ValueError) as e:
            print(f"{self.name} Upload Error: {e}")
            return UPLOAD_FAILED

        if r.status_code not in (200, 201):
            print(f"[{self.name} Error {r.status_code}] {r.text}")
            return UPLOAD_FAILED

        url = self.parse(r.text)
        if not url:
            print(f"[{self.name}] Could not find a file link in: {r.text}")
            return UPLOAD_FAILED
        return url


class PixelDrainUploader(Uploader):
    name = "PixelDrain"
    id_re = re.compile(r'"id"\s*:\s*"([^"]+)"')

    def __init__(self, api_key=None, session=None):
        super().__init__(session)
        self.api_key = api_key

    def _send(self, path, f):
        url = f"https://pixeldrain.com/api/file/{os.path.basename(path)}"
        return self.http.put(
            url,
            data=f,
            auth=("", self.api_key) if self.api_key else None,
            timeout=self.timeout,
        )

    def parse(self, body):
        match = self.id_re.search(body)
        if match:
            return f"https://pixeldrain.com/u/{match.group(1)}"
        return None


class GoFileUploader(Uploader):
    name = "GoFile"
    server_re = re.compile(r'"name"\s*:\s*"([^"]+)"')
    page_re = re.compile(r'"downloadPage"\s*:\s*"([^"]+)"')

    def get_server(self):
        r = self.http.get("https://api.gofile.io/servers", timeout=30)
        match = self.server_re.search(r.text)
        if not match:
            raise ValueError("no GoFile server available")
        return match.group(1)

    def _send(self, path, f):
        server = self.get_server()
        return self.http.post(
            f"https://{server}.gofile.io/uploadFile",
            files={"file": f},
            timeout=self.timeout,
        )

    def parse(self, body):
        match = self.page_re.search(body)
        return match.group(1).replace("\\/", "/") if match else None


class UploadClient:
    """Pushes a file to every configured backend."""

    def __init__(self, backends):
        self.backends = list(backends)

    @classmethod
    def from_config(cls, config, session=None):
        backends = [PixelDrainUploader(config.pd_api, session=session)]
        if config.use_gofile:
            backends.append(GoFileUploader(session=session))
        return cls(backends)

    def backend(self, name):
        for b in self.backends:
            if b.name == name:
                return b
        return None

    def upload(self, path):
        """Return ``{backend name: url or UPLOAD_FAILED}`` in backend order."""
        return {b.name: b.upload(path) for b in self.backends}
