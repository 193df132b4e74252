#!/usr/bin/env python3
# =============================================================================
# CLI Tool for AWS Channel Adapters
# =============================================================================
# Developer tooling for sending a single message through an adapter.
# Uses the same adapter registry as the Lambda entry point.
#
# Usage:
#   python tools/cli.py kinesis --stream events --partition-key k1 --text "hello"
#   python tools/cli.py sqs --queue jobs --json '{"job": 1}' --sync
#   python tools/cli.py s3 --bucket my-bucket --file ./report.pdf
#   python tools/cli.py list
# =============================================================================

import argparse
import json
import sys
import os
from pathlib import Path

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from awsbridge.runtime.channels import QueueChannel
from awsbridge.runtime.deps import create_deps
from awsbridge.runtime.errors import BridgeError
from awsbridge.runtime.message import AwsHeaders, Message
from handlers import build_adapter, list_adapters


def build_message(args) -> Message:
    """Payload from --text / --json / --file, headers from the target flags."""
    if args.file:
        payload = Path(args.file) if args.target == "s3" else Path(args.file).read_bytes()
    elif args.json:
        payload = json.loads(args.json)
    elif args.text is not None:
        payload = args.text
    else:
        raise SystemExit("One of --text, --json or --file is required")

    headers = {}
    for item in args.header or []:
        name, _, value = item.partition("=")
        headers[name] = value
    if args.partition_key:
        headers[AwsHeaders.PARTITION_KEY] = args.partition_key
    if args.key:
        headers[AwsHeaders.KEY] = args.key
    if args.command:
        headers[AwsHeaders.S3_COMMAND] = args.command
    return Message(payload, headers)


def adapter_overrides(args) -> dict:
    overrides = {"sync": args.sync}
    if args.timeout is not None:
        overrides["send_timeout"] = args.timeout
    if args.target == "kinesis" and args.stream:
        overrides["stream"] = args.stream
    elif args.target == "sqs" and args.queue:
        overrides["queue"] = args.queue
    elif args.target == "s3":
        if args.bucket:
            overrides["bucket"] = args.bucket
        if args.destination_bucket:
            overrides["destination_bucket"] = args.destination_bucket
        if args.destination_key:
            overrides["destination_key"] = args.destination_key
    return overrides


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="AWS channel adapter CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s list
  %(prog)s kinesis --stream events --partition-key k1 --text "hello"
  %(prog)s sqs --queue jobs --json '{"job": 1}' --header priority=high
  %(prog)s s3 --bucket my-bucket --file ./report.pdf --pretty
  %(prog)s s3 --bucket my-bucket --command DOWNLOAD --key reports/ --file ./out
        """
    )

    parser.add_argument("target", help="Adapter target (kinesis, sqs, s3) or 'list'")
    parser.add_argument("--text", "-t", help="Text payload")
    parser.add_argument("--json", "-j", help="JSON payload")
    parser.add_argument("--file", "-f", help="File payload (s3: path to upload / download into)")
    parser.add_argument("--header", "-H", action="append", help="Extra header name=value (repeatable)")
    parser.add_argument("--sync", action="store_true", help="Wait for the AWS call and fail on errors")
    parser.add_argument("--timeout", type=float, help="Send timeout in seconds (sync mode)")
    parser.add_argument("--pretty", "-p", action="store_true", help="Pretty print output")
    parser.add_argument("--region", "-r", default=None, help="AWS region")

    # Target parameters
    parser.add_argument("--stream", help="Kinesis stream name")
    parser.add_argument("--partition-key", help="Kinesis partition key")
    parser.add_argument("--queue", help="SQS queue name or URL")
    parser.add_argument("--bucket", help="S3 bucket")
    parser.add_argument("--key", help="S3 object key or key prefix")
    parser.add_argument("--command", choices=["UPLOAD", "DOWNLOAD", "COPY"], help="S3 command")
    parser.add_argument("--destination-bucket", help="S3 COPY target bucket")
    parser.add_argument("--destination-key", help="S3 COPY target key")

    args = parser.parse_args(argv)

    if args.target == "list":
        print(json.dumps(list_adapters(), indent=2 if args.pretty else None))
        return

    deps = create_deps(region=args.region)
    output = QueueChannel("cli-output")
    failures = QueueChannel("cli-failures")

    try:
        adapter = build_adapter(args.target, deps, output_channel=output,
                                failure_channel=failures, **adapter_overrides(args))
        adapter.handle_message(build_message(args))
    except BridgeError as e:
        print(json.dumps({"error": str(e), "type": type(e).__name__}), file=sys.stderr)
        sys.exit(1)
    finally:
        deps.close()

    result = {"sent": [m.to_dict() for m in output.clear()],
              "failed": [str(m.payload) for m in failures.clear()]}

    # Output
    if args.pretty:
        print(json.dumps(result, indent=2, ensure_ascii=False, default=str))
    else:
        print(json.dumps(result, ensure_ascii=False, default=str))

    # Exit with appropriate code
    if result["failed"]:
        sys.exit(1)


if __name__ == "__main__":
    main()
