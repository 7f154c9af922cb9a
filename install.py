#!/usr/bin/env python3
"""Bootstrap a local wa-autoreply checkout.

Usage:
    python install.py          # venv + bot with the WhatsApp client
    python install.py --dev    # same, editable, with pytest
"""

import os
import platform
import shutil
import subprocess
import sys

MIN_PYTHON = (3, 11)
PROJECT_DIR = os.path.dirname(os.path.abspath(__file__))
VENV_DIR = os.path.join(PROJECT_DIR, ".venv")
IS_WINDOWS = platform.system() == "Windows"
EXAMPLE_FILES = [("config.example.yaml", "config.yaml"), (".env.example", ".env")]


def check_python() -> None:
    if sys.version_info < MIN_PYTHON:
        sys.exit(
            f"wa-autoreply needs Python {MIN_PYTHON[0]}.{MIN_PYTHON[1]}+, "
            f"found {sys.version_info.major}.{sys.version_info.minor}."
        )


def venv_pip() -> str:
    if not os.path.isdir(VENV_DIR):
        print(f"Creating virtual environment in {VENV_DIR}")
        subprocess.check_call([sys.executable, "-m", "venv", VENV_DIR])
    pip = os.path.join(VENV_DIR, "Scripts" if IS_WINDOWS else "bin", "pip")
    subprocess.check_call([pip, "install", "--quiet", "--upgrade", "pip"])
    return pip


def install_project(pip: str, dev: bool) -> None:
    # neonize ships a native whatsmeow library per platform wheel
    target = ["-e", ".[whatsapp,dev]"] if dev else [".[whatsapp]"]
    print(f"pip install {' '.join(target)}")
    subprocess.check_call([pip, "install", *target], cwd=PROJECT_DIR)


def prepare_data_dir() -> None:
    data_dir = os.path.join(PROJECT_DIR, "data")
    os.makedirs(data_dir, exist_ok=True)
    open(os.path.join(data_dir, ".gitkeep"), "a").close()


def copy_examples() -> None:
    for src, dst in EXAMPLE_FILES:
        dst_path = os.path.join(PROJECT_DIR, dst)
        if os.path.exists(dst_path):
            print(f"{dst} exists, leaving it alone")
            continue
        shutil.copy(os.path.join(PROJECT_DIR, src), dst_path)
        print(f"{dst} created from {src}")


def print_next_steps() -> None:
    activate = r".\.venv\Scripts\activate" if IS_WINDOWS else "source .venv/bin/activate"
    print(
        "\nDone. Next:\n"
        "  1. config.yaml: keywords, reply delay, dashboard host/port\n"
        "  2. .env: OPENAI_API_KEY=... (or ANTHROPIC_API_KEY with backend: anthropic)\n"
        f"  3. {activate}\n"
        "  4. python -m wa_autoreply config-check\n"
        "  5. python -m wa_autoreply, then scan the QR code\n"
        "     (WhatsApp > Linked Devices > Link a Device, or the dashboard /qr-image)\n"
    )


def main() -> None:
    check_python()
    pip = venv_pip()
    install_project(pip, dev="--dev" in sys.argv)
    prepare_data_dir()
    copy_examples()
    print_next_steps()


if __name__ == "__main__":
    main()
