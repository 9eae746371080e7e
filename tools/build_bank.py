#!/usr/bin/env python3
"""
build_bank.py - Validate and encrypt plaintext JSON question banks.

Usage with key file:
    python tools/build_bank.py --in round2.json --out banks/round2.enc --key-file ROUND2.key

Usage with password:
    python tools/build_bank.py --in round2.json --out banks/round2.enc --password

Generate a key file first:
    python tools/build_bank.py --gen-key ROUND2.key
"""

import argparse
import getpass
import hashlib
import json
import sys
from pathlib import Path

from cryptography.fernet import Fernet

sys.path.insert(0, str(Path(__file__).parent.parent))

from assessment.config_loader import create_sample_config  # noqa: E402
from assessment.question_bank import QuestionBank, encrypt_bank  # noqa: E402
from assessment.models import QuestionType  # noqa: E402


def generate_key(output_file: str) -> None:
    """Write a new Fernet key to a file."""
    key = Fernet.generate_key()
    with open(output_file, 'wb') as f:
        f.write(key)
    print(f"[OK] Key written to {output_file}")
    print("[!] Store this key securely and never distribute it with the bank.")


def summarize(bank_data: dict) -> None:
    """Parse the bank the way the engine does and print what it contains."""
    bank = QuestionBank.from_dict(bank_data)
    mcq_count = len(bank.of_type(QuestionType.MCQ))
    code_count = len(bank.of_type(QuestionType.CODE))
    print("[OK] Input bank validated")
    print(f"  Group: {bank.group or 'unknown'}")
    print(f"  Version: {bank.version or 'unknown'}")
    print(f"  Questions: {mcq_count} mcq, {code_count} code")
    missing_cases = [q.id for q in bank.of_type(QuestionType.CODE) if not q.test_cases]
    if missing_cases:
        print(f"  [!] Coding questions without test cases: {', '.join(missing_cases)}")
    if bank.config is not None:
        print("  Bundled engine configuration: yes")


def build_bank(in_file: str, out_file: str, key_file: str = None, use_password: bool = False) -> None:
    """Encrypt a plaintext JSON question bank."""
    try:
        with open(in_file, 'rb') as f:
            plaintext = f.read()

        try:
            summarize(json.loads(plaintext))
        except json.JSONDecodeError as e:
            print(f"[ERROR] Invalid JSON in input file: {e}", file=sys.stderr)
            sys.exit(1)
        except (KeyError, TypeError, ValueError) as e:
            print(f"[ERROR] Malformed bank: {e}", file=sys.stderr)
            sys.exit(1)

        if use_password:
            password = getpass.getpass("Enter encryption password: ")
            if password != getpass.getpass("Confirm password: "):
                print("[ERROR] Passwords do not match", file=sys.stderr)
                sys.exit(1)
            if len(password) < 8:
                print("[ERROR] Password must be at least 8 characters", file=sys.stderr)
                sys.exit(1)
            final_data = encrypt_bank(plaintext, password=password)
        else:
            with open(key_file, 'rb') as f:
                final_data = encrypt_bank(plaintext, key=f.read().strip())

        Path(out_file).parent.mkdir(parents=True, exist_ok=True)
        with open(out_file, 'wb') as f:
            f.write(final_data)

        print("\n[OK] Bank encrypted")
        print(f"  Output: {out_file} ({len(final_data)} bytes)")
        print(f"  Method: {'Password-based' if use_password else 'Key file'}")
        print(f"  SHA256: {hashlib.sha256(final_data).hexdigest()}")

    except FileNotFoundError as e:
        print(f"[ERROR] File not found: {e}", file=sys.stderr)
        sys.exit(1)
    except ValueError as e:
        print(f"[ERROR] Error encrypting bank: {e}", file=sys.stderr)
        sys.exit(1)


def main():
    parser = argparse.ArgumentParser(
        description="Validate and encrypt a plaintext JSON question bank.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python tools/build_bank.py --gen-key ROUND1.key
  python tools/build_bank.py --sample-config config.json
  python tools/build_bank.py --in round1.json --out banks/round1.enc --key-file ROUND1.key
  python tools/build_bank.py --in round2.json --out banks/round2.enc --password

Notes:
  - The bank is parsed with the engine's own loader before encryption
  - A bundle {"config": {...}, "bank": {...}} is accepted as input
        """
    )
    parser.add_argument("--gen-key", metavar="PATH", help="Generate a new key file and exit")
    parser.add_argument("--sample-config", metavar="PATH", help="Write a sample engine config.json and exit")
    parser.add_argument("--in", dest="in_file", help="Input plaintext JSON file")
    parser.add_argument("--out", help="Output encrypted bank file (.enc)")
    parser.add_argument("--key-file", help="File containing the encryption key (mutually exclusive with --password)")
    parser.add_argument("--password", action="store_true", help="Use password-based encryption instead of key file")

    args = parser.parse_args()

    if args.gen_key:
        generate_key(args.gen_key)
        return
    if args.sample_config:
        create_sample_config(Path(args.sample_config))
        return

    if not args.in_file or not args.out:
        parser.error("--in and --out are required")
    if args.password == bool(args.key_file):
        print("[ERROR] Specify exactly one of --password or --key-file", file=sys.stderr)
        sys.exit(1)

    build_bank(args.in_file, args.out, args.key_file, args.password)


if __name__ == "__main__":
    main()
