import os
import time
import tempfile
from contextlib import contextmanager

import requests

API_URL = "https://api.telegram.org/bot{token}/{method}"


@contextmanager
def fetched_file(url, suffix="", timeout=30):
    """Download ``url`` to a temporary path that is removed on exit."""
    fd, path = tempfile.mkstemp(suffix=suffix)
    try:
        with os.fdopen(fd, "wb") as f:
            r = requests.get(url, timeout=timeout)
            r.raise_for_status()
            f.write(r.content)
        yield path
    finally:
        if os.path.exists(path):
            os.remove(path)


class TelegramClient:
    """Status card and notification calls against the Bot API.

    Everything except ``send_photo``/``send_msg`` is best-effort: failures are
    printed and reported through the boolean return value, never raised.
    """

    def __init__(self, config, retries=3, timeout=30, session=None):
        self.token = config.bot_token
        self.chat_id = config.chat_id
        self.error_chat_id = config.error_chat_id
        self.retries = retries
        self.timeout = timeout
        self.http = session or requests

    def tg_req(self, method, data, files=None, retries=None):
        url = API_URL.format(token=self.token, method=method)
        retries = retries or self.retries
        for attempt in range(retries):
            try:
                r = self.http.post(url, data=data, files=files, timeout=self.timeout)
                if r.status_code == 200:
                    return r.json()
                print(f"[Telegram Error {r.status_code}] {r.text}")
                # Bad requests won't get better on retry
                if r.status_code == 400:
                    break
            except (requests.RequestException, ValueError) as e:
                print(f"[Telegram Retry {attempt+1}/{retries}] {e}")
                time.sleep(2)
        return {}

    @staticmethod
    def _message_id(response):
        return response.get("result", {}).get("message_id")

    def send_photo(self, photo, caption):
        """Post the status card. ``photo`` is a local path or a public URL."""
        data = {
            "chat_id": self.chat_id,
            "caption": caption,
            "parse_mode": "html",
        }
        if not os.path.isfile(photo):
            data["photo"] = photo
            return self._message_id(self.tg_req("sendPhoto", data))
        with open(photo, "rb") as f:
            resp = self.tg_req("sendPhoto", data, files={"photo": f})
        return self._message_id(resp)

    def edit_caption(self, msg_id, caption, retries=None):
        if not msg_id:
            return False
        resp = self.tg_req(
            "editMessageCaption",
            {
                "chat_id": self.chat_id,
                "message_id": msg_id,
                "caption": caption,
                "parse_mode": "html",
            },
            retries=retries,
        )
        return bool(resp.get("ok"))

    def send_msg(self, text):
        data = {
            "chat_id": self.chat_id,
            "text": text,
            "parse_mode": "html",
            "disable_web_page_preview": "true",
        }
        return self._message_id(self.tg_req("sendMessage", data))

    def edit_msg(self, msg_id, text):
        if not msg_id:
            return False
        resp = self.tg_req(
            "editMessageText",
            {
                "chat_id": self.chat_id,
                "message_id": msg_id,
                "text": text,
                "parse_mode": "html",
                "disable_web_page_preview": "true",
            },
        )
        return bool(resp.get("ok"))

    def send_doc(self, file_path, chat_id=None):
        if not os.path.exists(file_path):
            return False
        with open(file_path, "rb") as f:
            resp = self.tg_req(
                "sendDocument",
                {"chat_id": chat_id or self.error_chat_id, "parse_mode": "html"},
                files={"document": f},
            )
        return bool(resp.get("ok"))

    def send_sticker(self, sticker_url):
        try:
            with fetched_file(sticker_url, suffix=".webp") as path:
                with open(path, "rb") as f:
                    resp = self.tg_req(
                        "sendSticker",
                        {
                            "chat_id": self.chat_id,
                            "is_animated": "false",
                            "is_video": "false",
                        },
                        files={"sticker": f},
                    )
        except (requests.RequestException, OSError) as e:
            print(f"Sticker Error: {e}")
            return False
        return bool(resp.get("ok"))
