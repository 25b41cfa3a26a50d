#!/usr/bin/env python3
"""Run the trackledger test suite against a throwaway state directory."""

from __future__ import annotations

import argparse
import os
import subprocess
import sys
import tempfile

TEST_ENV = {
    "TRACKLEDGER_TEST_MODE": "1",
    "TRACKLEDGER_AUTH_MODE": "off",
    "TRACKLEDGER_LOG_TO_FILE": "off",
    "TRACKLEDGER_INTEGRITY_CHECK": "off",
}


def build_env(state_dir: str) -> dict[str, str]:
    env = dict(os.environ)
    env.update(TEST_ENV)
    env["TRACKLEDGER_STATE_DIR"] = state_dir
    env.pop("TRACKLEDGER_AUTH_TOKEN", None)
    return env


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Run the trackledger tests")
    parser.add_argument("--install", action="store_true", help="pip install -e .[test] first")
    args, pytest_args = parser.parse_known_args(argv)

    with tempfile.TemporaryDirectory(prefix="trackledger-test-") as state_dir:
        env = build_env(state_dir)
        commands = []
        if args.install:
            commands.append([sys.executable, "-m", "pip", "install", "-e", ".[test]"])
        commands.append([sys.executable, "-m", "pytest", "-q", *pytest_args])
        for command in commands:
            print(f"+ {' '.join(command)}", flush=True)
            completed = subprocess.run(command, env=env)
            if completed.returncode != 0:
                return completed.returncode
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
