import os
import html
import sys
import time
import shutil
import dataclasses
import argparse
import subprocess

import requests

import utils
from config import DEFAULT_CONFIG_FILE, ConfigError, load_config
from monitor import (
    INITIALIZING,
    BuildMonitor,
    BuildSession,
    build_succeeded,
)
from notify import TelegramClient
from uploads import UploadClient

LOG_FILE = "build.log"
OG_IMAGE_FILE = "og_preview.png"
OG_IMAGE_URL = "https://ogpreview.servertronstar.org/api/generate"
GH_API_URL = "https://api.github.com/users/{user}"

BUILD_PROCESS = None


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description="Sync, build and upload an Android ROM, reporting to Telegram."
    )
    parser.add_argument(
        "-s", "--sync", action="store_true", help="Sync sources before building."
    )
    parser.add_argument(
        "-c",
        "--clean",
        action="store_true",
        help="Clean build directory before compilation.",
    )
    parser.add_argument(
        "-o", "--official", action="store_true", help="Build the official variant."
    )
    parser.add_argument(
        "--config", default=DEFAULT_CONFIG_FILE, help="Path to the config file."
    )
    return parser.parse_args(argv)


def bash(cmd, **kwargs):
    return subprocess.call(cmd, shell=True, executable="/bin/bash", **kwargs)


def sync_sources(config, notifier, run=subprocess.call):
    """repo sync with a plain fallback. A failed sync never stops the build."""
    print("\nStarting to sync sources...\n")
    details = "\n".join(
        [
            utils.line("ROM", config.rom_name),
            utils.line("DEVICE", config.device),
            utils.line("JOBS", f"{config.sync_jobs} Cores"),
        ]
    )
    msg_id = notifier.send_msg(utils.format_msg("🟡", "Syncing sources...", details))

    jobs = config.sync_jobs
    start = time.time()
    cmd = [
        "repo",
        "sync",
        "-c",
        f"--jobs-network={jobs}",
        f"-j{jobs}",
        f"--jobs-checkout={jobs}",
        "--optimized-fetch",
        "--prune",
        "--force-sync",
        "--no-clone-bundle",
        "--no-tags",
    ]
    if run(cmd) != 0:
        print("\nInitial sync failed. Retrying with fewer arguments...\n")
        if run(["repo", "sync", f"-j{jobs}"]) != 0:
            print("\nSync failed completely. Proceeding with build anyway...\n")
            notifier.edit_msg(
                msg_id,
                utils.format_msg(
                    "🔴", "Syncing sources failed!", footer="Proceeding with build..."
                ),
            )
            return False

    duration = utils.get_duration(time.time() - start)
    details = "\n".join(
        [utils.line("ROM", config.rom_name), utils.line("DEVICE", config.device)]
    )
    notifier.edit_msg(
        msg_id,
        utils.format_msg(
            "🟢", "Sources synced!", details, footer=f"Syncing took {duration}."
        ),
    )
    return True


def get_avatar_url(maintainer):
    try:
        r = requests.get(GH_API_URL.format(user=maintainer), timeout=30)
        avatar = r.json().get("avatar_url")
    except (requests.RequestException, ValueError, AttributeError) as e:
        print(f"Avatar lookup failed: {e}")
        avatar = None
    return avatar or utils.DEFAULT_AVATAR_URL


def fetch_og_image(session, path=OG_IMAGE_FILE):
    """Render the preview card image for the session. Returns the path or None."""
    params = {
        "title": session.rom_name,
        "avatar": get_avatar_url(session.maintainer),
        "theme": "nightOwl",
        "bio": f"Maintainer: {session.maintainer} | Device: {session.device}",
    }
    try:
        r = requests.get(OG_IMAGE_URL, params=params, timeout=60)
        r.raise_for_status()
    except requests.RequestException as e:
        print(f"OG Image Error: {e}")
        return None
    with open(path, "wb") as f:
        f.write(r.content)
    return path


def post_status_card(notifier, session, photo_path):
    """Post the card as a photo so later caption edits apply to it."""
    caption = utils.build_caption(session, "Compiling ROM...", INITIALIZING)
    for photo in (photo_path, utils.DEFAULT_AVATAR_URL):
        if not photo:
            continue
        try:
            msg_id = notifier.send_photo(photo, caption)
        except OSError as e:
            print(f"Status card photo failed: {e}")
            continue
        if msg_id:
            return msg_id
    print("[BOT] Could not post the status card, progress will not be reported.")
    return None


def start_build(config, log_path=LOG_FILE):
    jobs = config.compile_jobs
    build_cmd = (
        f"source build/envsetup.sh && breakfast {config.device} >/dev/null && "
        f"m installclean -j{jobs} && m {config.target} -j{jobs}"
    )
    print(f"Cmd: {build_cmd}")
    with open(log_path, "w") as log:
        return subprocess.Popen(
            build_cmd,
            shell=True,
            executable="/bin/bash",
            stdout=log,
            stderr=subprocess.STDOUT,
        )


def final_summary(session, zip_path, links, duration, md5=None):
    """Success caption. ``links`` maps a label to a URL or a failed sentinel."""
    details = [
        utils.session_details(session),
        utils.line("SIZE", utils.file_size(zip_path)),
        utils.line("MD5SUM", md5 or utils.md5sum(zip_path)),
    ]
    for label, url in links.items():
        if url:
            details.append(utils.link(label, url))
    return utils.MESSAGES["build_success"].format(
        details="\n".join(details), time=duration
    )


def report_failure(config, notifier, session, duration, log_path=LOG_FILE):
    print("\nBuild failed. Check build.log for details.")
    notifier.edit_caption(
        session.message_id,
        utils.MESSAGES["build_fail"].format(
            rom=html.escape(session.rom_name),
            device=html.escape(session.device),
            time=duration,
        ),
    )
    err_log = "out/error.log" if os.path.exists("out/error.log") else log_path
    notifier.send_doc(err_log, config.error_chat_id)
    notifier.send_sticker(utils.STICKER_URL)

    if os.path.exists("out/error.log"):
        print("\nDisplaying error log:")
        with open("out/error.log", "r", errors="replace") as f:
            print(f.read())


def report_success(config, notifier, uploader, session, duration):
    print("\nBuild successful!")
    zip_file = utils.find_artifact(config.out_dir, config.device, "zip")
    if not zip_file:
        print("No ZIP file found in the output directory.")
        notifier.edit_caption(session.message_id, utils.MESSAGES["no_zip"])
        return False

    json_file = utils.find_artifact(config.out_dir, config.device, "json")

    print("\nUploading build artifacts...")
    results = uploader.upload(zip_file)
    links = {}
    if json_file:
        pd = uploader.backend("PixelDrain")
        if pd:
            links["JSON"] = pd.upload(json_file)
    for name, url in results.items():
        links[name.upper()] = url

    notifier.edit_caption(
        session.message_id, final_summary(session, zip_file, links, duration)
    )
    notifier.send_sticker(utils.STICKER_URL)
    return True


def run_build(config, notifier, session, log_path=LOG_FILE, monitor_cls=BuildMonitor):
    """Launch the build and supervise it until it exits. Returns the exit code."""
    global BUILD_PROCESS

    print("\nStarting build... (Logs at build.log)")
    BUILD_PROCESS = start_build(config, log_path)
    monitor = monitor_cls(session, notifier, log_path, interval=config.poll_interval)
    return monitor.run(BUILD_PROCESS)


def main(argv=None):
    args = parse_args(argv)

    try:
        config = load_config(args.config)
        if args.official and not config.official_flag:
            raise ConfigError(
                "Official flag (CONFIG_OFFICIAL_FLAG) not set in configuration."
            )
    except ConfigError as e:
        print(f"\nERROR: {e}\n")
        sys.exit(1)

    utils.register_signal_handler(lambda: BUILD_PROCESS)

    notifier = TelegramClient(config)
    uploader = UploadClient.from_config(config)

    utils.remove_files("out/error.log", "out/.lock", LOG_FILE)

    if args.sync:
        sync_sources(config, notifier)

    if args.clean and os.path.exists("out"):
        print("\nNuking the out directory...\n")
        shutil.rmtree("out")

    session = BuildSession(
        rom_name=config.rom_name,
        device=config.device,
        android_version=utils.get_android_version(),
        build_type="Official" if args.official else "Unofficial",
        maintainer=utils.get_maintainer(),
    )
    msg_id = post_status_card(notifier, session, fetch_og_image(session))
    session = dataclasses.replace(session, message_id=msg_id, start_time=time.time())

    print("\nSetting up build environment...")
    print(f'\nRunning breakfast for "{config.device}"...')
    if bash(f"source build/envsetup.sh && breakfast {config.device}") != 0:
        print(f"\nERROR: Failed at running breakfast for {config.device}.\n")
        notifier.edit_caption(
            msg_id,
            utils.MESSAGES["breakfast_fail"].format(
                rom=html.escape(config.rom_name), device=html.escape(config.device)
            ),
        )
        notifier.send_sticker(utils.STICKER_URL)
        sys.exit(1)

    run_build(config, notifier, session)
    duration = utils.get_duration(time.time() - session.start_time)

    failed = not build_succeeded(LOG_FILE)
    if failed:
        report_failure(config, notifier, session, duration)
    elif not report_success(config, notifier, uploader, session, duration):
        sys.exit(1)

    if config.poweroff:
        print("\nPowering off server...")
        subprocess.call(["sudo", "poweroff"])

    if failed:
        sys.exit(1)


if __name__ == "__main__":
    main()
