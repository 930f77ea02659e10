import pytest

from config import Config
from monitor import BuildSession


class FakeNotifier:
    def __init__(self, fail_edits=False):
        self.fail_edits = fail_edits
        self.captions = []
        self.messages = []
        self.edits = []
        self.docs = []
        self.stickers = []
        self.photos = []

    def send_photo(self, photo_path, caption):
        self.photos.append((photo_path, caption))
        return 42

    def edit_caption(self, msg_id, caption, retries=None):
        if self.fail_edits:
            raise ConnectionError("telegram down")
        self.captions.append((msg_id, caption))
        return True

    def send_msg(self, text):
        self.messages.append(text)
        return 7

    def edit_msg(self, msg_id, text):
        self.edits.append((msg_id, text))
        return True

    def send_doc(self, file_path, chat_id=None):
        self.docs.append((file_path, chat_id))
        return True

    def send_sticker(self, sticker_url):
        self.stickers.append(sticker_url)
        return True


class FakeProcess:
    """Reports alive for ``polls`` liveness checks, then exits with ``code``."""

    def __init__(self, polls, code=0, on_poll=None):
        self.remaining = polls
        self.code = code
        self.on_poll = on_poll
        self.waited = False

    def poll(self):
        if self.remaining > 0:
            self.remaining -= 1
            if self.on_poll:
                self.on_poll()
            return None
        return self.code

    def wait(self):
        self.waited = True
        return self.code


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def config():
    return Config(
        bot_token="123:abc",
        chat_id="-100",
        error_chat_id="-200",
        device="lavender",
        target="bacon",
        rom_name="LineageOS",
        compile_jobs=8,
        sync_jobs=8,
        pd_api="pd-key",
        use_gofile=True,
    )


@pytest.fixture
def session():
    return BuildSession(
        rom_name="LineageOS",
        device="lavender",
        android_version="14",
        build_type="Unofficial",
        maintainer="kny",
        start_time=0.0,
        message_id=42,
    )
