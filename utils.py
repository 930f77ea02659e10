import os
import re
import sys
import time
import glob
import html
import signal
import subprocess

STICKER_URL = "https://raw.githubusercontent.com/Weebo354342432/reimagined-enigma/main/update.webp"
DEFAULT_AVATAR_URL = "https://avatars.githubusercontent.com/u/583231?v=4"
MANIFEST_PATH = ".repo/manifests/default.xml"

# Flavor lines rotated into progress captions
QUOTES = (
    "Be patient, greatness takes time.",
    "The build is cooking, hang in there!",
    "A moment of patience can prevent a great mistake.",
    "The quieter you become, the more you are able to hear.",
    "Stay calm, the magic is happening.",
)

# Caption templates for the status card and sync message
MESSAGES = {
    "build_card": (
        "🔧 <b>Build Started:</b> <code>{rom}</code> for <b>{device}</b> by <b>{maintainer}</b>\n\n"
        "🟡 <i>{headline}</i>\n\n"
        "{details}\n"
        "{progress}"
    ),
    "breakfast_fail": (
        "❌ <b>Build Failed:</b> <code>{rom}</code>\n\n"
        "<i>Failed at running breakfast for {device}.</i>"
    ),
    "build_fail": (
        "❌ <b>Build Failed:</b> <code>{rom}</code> for <b>{device}</b>\n\n"
        "Build failed after {time}. Check out the log for more details."
    ),
    "no_zip": (
        "❌ <b>Build finished, but no ZIP file found!</b>\n\n"
        "Check the output directory for details."
    ),
    "build_success": (
        "✅ <b>ROM compiled successfully!</b>\n\n"
        "{details}\n\n"
        "<i>Compilation took {time}.</i>"
    ),
}


# Formatting
def get_duration(seconds):
    seconds = int(seconds)
    hours = seconds // 3600
    minutes = (seconds % 3600) // 60
    secs = seconds % 60

    duration = ""
    if hours > 0:
        duration = f"{hours} hour(s), "
    if minutes > 0 or hours > 0:
        duration += f"{minutes} minute(s) and "
    return f"{duration}{secs} second(s)"


def line(label, value):
    return f"<b>• {label}:</b> <code>{html.escape(str(value))}</code>"


def link(label, url):
    return f'<b>• {label}:</b> <a href="{url}">Here</a>'


def format_msg(icon, title, details="", footer=""):
    msg = f"<b>{icon} | {title}</b>"
    if details:
        msg += f"\n\n{details}"
    if footer:
        msg += f"\n\n<i>{html.escape(footer)}</i>"
    return msg


def session_details(session):
    return "\n".join(
        [
            line("ROM", session.rom_name),
            line("DEVICE", session.device),
            line("ANDROID VERSION", session.android_version),
            line("TYPE", session.build_type),
        ]
    )


def build_caption(session, headline, progress):
    return MESSAGES["build_card"].format(
        rom=html.escape(session.rom_name),
        device=html.escape(session.device),
        maintainer=html.escape(session.maintainer),
        headline=html.escape(headline),
        details=session_details(session),
        progress=line("PROGRESS", progress),
    )


# Build environment facts
def get_android_version(manifest=MANIFEST_PATH):
    try:
        with open(manifest, "r", errors="replace") as f:
            match = re.search(r"android-(\d+)", f.read())
    except OSError:
        return "N/A"
    return match.group(1) if match else "N/A"


def get_maintainer():
    try:
        name = subprocess.check_output(
            ["git", "config", "--get", "user.name"], text=True
        ).strip()
    except (OSError, subprocess.CalledProcessError):
        name = ""
    return name or "Unknown"


# Artifacts
def find_artifact(out_dir, device, ext):
    matches = glob.glob(os.path.join(out_dir, f"*{device}*.{ext}"))
    if not matches:
        return None
    return max(matches, key=os.path.getctime)


def file_size(path):
    size_mb = os.path.getsize(path) / (1024 * 1024)
    return f"{size_mb:.2f} MB"


def md5sum(path):
    try:
        return subprocess.check_output(["md5sum", path], text=True).split()[0]
    except (OSError, subprocess.CalledProcessError):
        return "N/A"


def remove_files(*paths):
    for path in paths:
        if os.path.exists(path):
            os.remove(path)


# Signal handler to kill build processes
def register_signal_handler(process_getter):

    def handler(sig, frame):
        print("\n[BOT] Interruption detected. Exiting...")
        process = process_getter()

        if process and process.poll() is None:
            print("[BOT] Killing build process...")
            process.terminate()
            time.sleep(1)
            if process.poll() is None:
                process.kill()
        sys.exit(0)

    signal.signal(signal.SIGINT, handler)
