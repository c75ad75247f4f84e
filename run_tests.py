#!/usr/bin/env python3
"""
Test runner for the Bill Countdown jobs service.
Run specific tests or the whole suite.

Usage:
    python run_tests.py                           # Run all tests
    python run_tests.py -k test_dst               # Run specific test pattern
    python run_tests.py --file queue_drainer      # Run one test module
    python run_tests.py --cov                     # Run with coverage
"""

import sys
import subprocess
from pathlib import Path


def run_tests(target="tests", args=None):
    """Run tests with pytest."""
    if args is None:
        args = []

    # Base pytest command
    cmd = [
        sys.executable, "-m", "pytest",
        target,
        "-v",
        "--tb=short"
    ]

    # Add additional arguments
    cmd.extend(args)

    print(f"Running: {' '.join(cmd)}")
    result = subprocess.run(cmd, cwd=Path(__file__).parent)
    return result.returncode


def main():
    """Main entry point."""
    import argparse

    parser = argparse.ArgumentParser(description="Run tests for the reminder and auto sync jobs")
    parser.add_argument("-k", "--keyword", help="Run tests matching keyword")
    parser.add_argument("--file", help="Run a single module, e.g. scheduler for tests/test_scheduler.py")
    parser.add_argument("--cov", action="store_true", help="Run with coverage")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")
    parser.add_argument("--pdb", action="store_true", help="Drop into debugger on failure")

    args = parser.parse_args()

    target = f"tests/test_{args.file}.py" if args.file else "tests"
    pytest_args = []

    if args.keyword:
        pytest_args.extend(["-k", args.keyword])

    if args.cov:
        pytest_args.extend([
            "--cov=billcountdown",
            "--cov-report=html",
            "--cov-report=term-missing"
        ])

    if args.verbose:
        pytest_args.append("-vv")

    if args.pdb:
        pytest_args.append("--pdb")

    return run_tests(target, pytest_args)


if __name__ == "__main__":
    sys.exit(main())
