"""CLI: cdn-uploader upload --grant grant.json FILE."""
import argparse
import json
import sys
from pathlib import Path

from .client import GrantUploader, SignatureOrPolicyRejectedError


def main() -> int:
    parser = argparse.ArgumentParser(prog="cdn-uploader", description="Upload a file with an issued upload grant")
    parser.add_argument("--timeout", type=float, default=60.0, help="Request timeout in seconds")
    parser.add_argument("--retries", type=int, default=5, help="Attempts for transient failures")
    sub = parser.add_subparsers(dest="command", required=True)

    p_upload = sub.add_parser("upload", help="Upload one file")
    p_upload.add_argument("--grant", required=True, help="Path to grant JSON ({uploadURL, requiredHeaders, formFields?}), or - for stdin")
    p_upload.add_argument("--content-type", default=None, help="Content type (guessed from extension if omitted)")
    p_upload.add_argument("file", help="Local file path")
    p_upload.set_defaults(func=cmd_upload)

    args = parser.parse_args()
    uploader = GrantUploader(timeout=args.timeout, max_retries=args.retries)
    try:
        return args.func(uploader, args)
    except SignatureOrPolicyRejectedError as e:
        print(f"Rejected: {e}", file=sys.stderr)
        return 2
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        uploader.close()


def cmd_upload(uploader: GrantUploader, args: argparse.Namespace) -> int:
    if args.grant == "-":
        grant = json.load(sys.stdin)
    else:
        grant_path = Path(args.grant)
        if not grant_path.exists():
            print(f"Grant not found: {grant_path}", file=sys.stderr)
            return 1
        grant = json.loads(grant_path.read_text())
    if "uploadURL" not in grant:
        print("Grant must contain 'uploadURL'", file=sys.stderr)
        return 1
    path = Path(args.file)
    if not path.exists():
        print(f"Missing file: {path}", file=sys.stderr)
        return 1
    uploader.upload(grant, path, content_type=args.content_type)
    mode = "form POST" if grant.get("formFields") else "PUT"
    print(f"Uploaded {path.name} ({path.stat().st_size} bytes) via {mode}", file=sys.stderr)
    return 0


if __name__ == "__main__":
    sys.exit(main())
