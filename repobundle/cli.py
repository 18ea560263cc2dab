#!/usr/bin/env python3
"""
repobundle - build self-contained package repositories with pip.
"""
import argparse
import logging
import subprocess
import sys
from pathlib import Path

from repobundle.builder import RepositoryBuilder
from repobundle.packager import LOCK_NAME, MANIFEST_NAME, RepositoryPackager


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='repobundle',
        description='Materialize a locked dependency set, plus pip, into a repository directory',
        formatter_class=argparse.RawDescriptionHelpFormatter
    )

    parser.add_argument('-v', '--verbose', action='store_true', help='Enable debug logging')

    subparsers = parser.add_subparsers(dest='command', help='Command to execute')

    # build
    build_parser = subparsers.add_parser('build', help='Install the locked dependencies into a target directory')
    build_parser.add_argument('target_dir', help='Repository directory to install into')
    build_parser.add_argument('--manifest', default=MANIFEST_NAME, help=f'Manifest file (default: {MANIFEST_NAME})')
    build_parser.add_argument('--lock', default=LOCK_NAME, help=f'Lock file (default: {LOCK_NAME})')
    build_parser.add_argument('--work-dir', help='Directory for pip configuration (default: temporary)')

    # package
    package_parser = subparsers.add_parser('package', help='Build the repository and archive it')
    package_parser.add_argument('--project-dir', default='.', help='Project root holding the manifest and lock (default: .)')
    package_parser.add_argument('--output-dir', default='dist', help='Directory for the archive (default: dist)')
    package_parser.add_argument('--name', required=True, help='Artifact name')
    package_parser.add_argument('--version', required=True, help='Artifact version')

    return parser


def main(argv=None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s %(levelname)s %(name)s: %(message)s'
    )

    try:
        if args.command == 'build':
            location = RepositoryBuilder().build(
                Path(args.target_dir).expanduser().resolve(),
                args.manifest,
                args.lock,
                work_dir=args.work_dir
            )
            print(location)
        elif args.command == 'package':
            packager = RepositoryPackager(
                project_dir=Path(args.project_dir),
                output_dir=Path(args.output_dir),
                name=args.name,
                version=args.version
            )
            print(packager.package())
        else:
            parser.print_help()
            return 1
    except subprocess.CalledProcessError as e:
        print(f"Error: pip exited with status {e.returncode}", file=sys.stderr)
        if e.stderr:
            print(e.stderr, file=sys.stderr)
        return 1
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        cause = e.__cause__
        if isinstance(cause, subprocess.CalledProcessError) and cause.stderr:
            print(cause.stderr, file=sys.stderr)
        elif cause is not None:
            print(f"Caused by: {cause}", file=sys.stderr)
        return 1

    return 0


if __name__ == '__main__':
    sys.exit(main())
