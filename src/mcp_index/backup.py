"""Backup and restore the instruction catalog and its runtime data."""

import shutil
import sys
import tarfile
import tempfile
from datetime import datetime
from pathlib import Path

from .config import load_config
from .version import __version__

# Archive member names
INSTRUCTIONS_MEMBER = "instructions"
DATA_MEMBER = "data"


def backup_sources(instructions_dir: Path, data_dir: Path) -> dict[str, Path]:
    """Directories included in a backup, keyed by their name in the archive."""
    return {
        name: path
        for name, path in ((INSTRUCTIONS_MEMBER, instructions_dir), (DATA_MEMBER, data_dir))
        if path.exists()
    }


def backup(
    output_path: Path | None = None,
    instructions_dir: Path | None = None,
    data_dir: Path | None = None,
) -> Path:
    """
    Create a tar.gz backup of the instructions directory and ``data/``.

    Args:
        output_path: Where to save the backup (default: mcp-index-backup-YYYYMMDD-HHMMSS.tar.gz)
        instructions_dir: Instructions directory (default: configured INSTRUCTIONS_DIR)
        data_dir: Runtime data directory (default: <root>/data)

    Returns:
        Path to the created backup file
    """
    config = load_config()
    instructions_dir = instructions_dir or config.instructions_dir
    data_dir = data_dir or config.data_dir
    sources = backup_sources(instructions_dir, data_dir)
    if INSTRUCTIONS_MEMBER not in sources:
        raise FileNotFoundError(f"Instructions directory not found: {instructions_dir}")

    if output_path is None:
        timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
        output_path = Path.cwd() / f"mcp-index-backup-{timestamp}"

    # Stage both directories under fixed names so restore does not depend on paths
    with tempfile.TemporaryDirectory(prefix="mcp-index-backup-") as staging:
        staging_root = Path(staging)
        for name, path in sources.items():
            shutil.copytree(path, staging_root / name)
        base = str(output_path)
        if base.endswith(".tar.gz"):
            base = base[: -len(".tar.gz")]
        archive_path = shutil.make_archive(base, "gztar", root_dir=staging_root)

    return Path(archive_path)


def restore(
    backup_path: Path,
    instructions_dir: Path | None = None,
    data_dir: Path | None = None,
    force: bool = False,
) -> list[Path]:
    """
    Restore the catalog from a backup.

    Args:
        backup_path: Path to the backup archive
        instructions_dir: Where to restore instructions (default: configured INSTRUCTIONS_DIR)
        data_dir: Where to restore runtime data (default: <root>/data)
        force: Overwrite existing directories

    Returns:
        Directories that were restored
    """
    if not backup_path.exists():
        raise FileNotFoundError(f"Backup file not found: {backup_path}")

    config = load_config()
    targets = {
        INSTRUCTIONS_MEMBER: instructions_dir or config.instructions_dir,
        DATA_MEMBER: data_dir or config.data_dir,
    }

    with tempfile.TemporaryDirectory(prefix="mcp-index-restore-") as staging:
        staging_root = Path(staging)
        with tarfile.open(backup_path, "r:gz") as archive:
            archive.extractall(staging_root, filter="data")

        present = {name: staging_root / name for name in targets if (staging_root / name).is_dir()}
        if INSTRUCTIONS_MEMBER not in present:
            raise ValueError(f"Backup does not contain an {INSTRUCTIONS_MEMBER}/ directory: {backup_path}")

        for name in present:
            target = targets[name]
            if target.exists() and any(target.iterdir()) and not force:
                raise FileExistsError(
                    f"Directory already exists: {target}\n"
                    "Use --force to overwrite, or backup existing data first."
                )

        restored = []
        for name, source in present.items():
            target = targets[name]
            # Remove existing if force
            if target.exists():
                shutil.rmtree(target)
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copytree(source, target)
            restored.append(target)
    return restored


def main():
    """CLI entry point for mcp-index-backup."""
    import argparse

    parser = argparse.ArgumentParser(
        description="Backup and restore the MCP Index instruction catalog",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  mcp-index-backup                          Create backup in current directory
  mcp-index-backup -o my-backup.tar.gz      Create backup with specific name
  mcp-index-backup --restore backup.tar.gz  Restore from backup
  mcp-index-backup --list                   Show what would be backed up
""",
    )

    parser.add_argument(
        "-o", "--output",
        type=Path,
        help="Output path for backup (default: mcp-index-backup-TIMESTAMP.tar.gz)",
    )
    parser.add_argument(
        "--restore",
        type=Path,
        metavar="BACKUP",
        help="Restore from a backup file",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite existing data when restoring",
    )
    parser.add_argument(
        "--list",
        action="store_true",
        help="List files that would be backed up",
    )
    parser.add_argument(
        "--instructions-dir",
        type=Path,
        default=None,
        help="Instructions directory (default: $INSTRUCTIONS_DIR or ./instructions)",
    )
    parser.add_argument(
        "--data-dir",
        type=Path,
        default=None,
        help="Runtime data directory (default: <root>/data)",
    )
    parser.add_argument(
        "-V", "--version",
        action="version",
        version=f"mcp-index-backup {__version__}",
    )

    args = parser.parse_args()
    config = load_config()
    instructions_dir = args.instructions_dir or config.instructions_dir
    data_dir = args.data_dir or config.data_dir

    try:
        if args.list:
            sources = backup_sources(instructions_dir, data_dir)
            if not sources:
                print(f"Instructions directory not found: {instructions_dir}")
                sys.exit(1)

            total_size = 0
            for name, path in sources.items():
                print(f"{name}/ ({path})")
                for item in sorted(path.rglob("*")):
                    if item.is_file():
                        size = item.stat().st_size
                        total_size += size
                        print(f"  {item.relative_to(path)} ({size:,} bytes)")
                print()

            print(f"Total: {total_size:,} bytes ({total_size / 1024 / 1024:.1f} MB)")

        elif args.restore:
            print(f"Restoring from: {args.restore}")
            for target in restore(args.restore, instructions_dir, data_dir, args.force):
                print(f"Restored to: {target}")

        else:
            archive = backup(args.output, instructions_dir, data_dir)
            size = archive.stat().st_size
            print(f"Backup created: {archive}")
            print(f"Size: {size:,} bytes ({size / 1024 / 1024:.1f} MB)")

    except (FileNotFoundError, FileExistsError, ValueError) as e:
        print(f"Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
