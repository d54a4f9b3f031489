import argparse
import logging
import os
import shutil
import sys

from opendrive_fs.config.manager import ConfigManager
from opendrive_fs.config.obscure import obscure
from opendrive_fs.errors import CantCopyError, OpenDriveError, SetupError
from opendrive_fs.fs.opendriveFS import connect
from opendrive_fs.objects.base import DirEntry
from opendrive_fs.objects.drive import ObjectInfo

logger = logging.getLogger("opendrive_fs")


def configure_logging(verbose=False):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='[%(asctime)s] %(levelname)s: %(message)s',
        datefmt='%H:%M:%S'
    )


def build_parser():
    parser = argparse.ArgumentParser(description="OpenDrive as a filesystem")
    parser.add_argument("--config", default=None, help="Path to configuration file")
    parser.add_argument("--remote", default=None, help="Remote profile to use (default: the only one configured)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("ls", help="List files and directories")
    p.add_argument("path", nargs="?", default="")
    p.add_argument("--depth", type=int, default=1, help="0 for unlimited")

    for name, help_text in (("mkdir", "Create a directory and any missing parents"),
                            ("rmdir", "Remove an empty directory"),
                            ("purge", "Remove a directory and everything in it"),
                            ("rm", "Remove a file"),
                            ("cat", "Write a file to stdout"),
                            ("md5sum", "Print the MD5 of a file")):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("path")

    p = sub.add_parser("put", help="Upload a local file")
    p.add_argument("local")
    p.add_argument("dest", metavar="remote")

    for name in ("copy", "move"):
        p = sub.add_parser(name, help=f"{name.capitalize()} a file, server side unless the name changes")
        p.add_argument("src")
        p.add_argument("dst")

    p = sub.add_parser("touch", help="Set the modification time of a file")
    p.add_argument("path")
    p.add_argument("mtime", type=int, help="Unix seconds")

    p = sub.add_parser("mount", help="Mount the remote with FUSE")
    p.add_argument("mount_point")
    p.add_argument("--cache-dir", default=None)

    p = sub.add_parser("obscure", help="Obscure a password for the config file")
    p.add_argument("password")
    return parser


def pick_remote(config, name):
    if name:
        return name
    names = config.remote_names()
    if len(names) != 1:
        raise SetupError(f"choose a remote with --remote (configured: {', '.join(names) or 'none'})")
    return names[0]


def copy_via_download(fs, src, remote, move=False):
    """Copies src to a new name by downloading and uploading it."""
    stream = src.open()
    try:
        dst = fs.put(stream, ObjectInfo(remote=remote, size=src.size, mod_time=src.mod_time))
    finally:
        stream.close()
    if move:
        src.remove()
    return dst


def run(args, config):
    fs = connect(config.load_remote(pick_remote(config, args.remote)),
                 pacer_settings=config.pacer, chunk_size=config.chunk_size)
    try:
        return run_command(fs, args, config)
    finally:
        fs.shutdown()


def run_command(fs, args, config):
    cmd = args.command

    if cmd == "ls":
        depth = None if args.depth == 0 else args.depth
        for entry in fs.list(args.path, depth=depth):
            if isinstance(entry, DirEntry):
                print(f"{'-':>12}  {entry.remote}/")
            else:
                print(f"{entry.size:>12}  {entry.remote}")

    elif cmd == "mkdir":
        fs.mkdir(args.path)

    elif cmd == "rmdir":
        fs.rmdir(args.path)

    elif cmd == "purge":
        fs.purge(args.path)

    elif cmd == "rm":
        fs.new_object(args.path).remove()

    elif cmd == "cat":
        stream = fs.new_object(args.path).open()
        try:
            shutil.copyfileobj(stream, sys.stdout.buffer)
        finally:
            stream.close()

    elif cmd == "md5sum":
        print(f"{fs.new_object(args.path).hash()}  {args.path}")

    elif cmd == "put":
        with open(args.local, 'rb') as f:
            obj = fs.put(f, ObjectInfo.from_local(args.local, args.dest))
        logger.info(f"Uploaded {args.local} -> {obj.remote} ({obj.size} bytes)")

    elif cmd in ("copy", "move"):
        src = fs.new_object(args.src)
        try:
            dst = getattr(fs, cmd)(src, args.dst)
        except CantCopyError:
            logger.info(f"Server side {cmd} can't rename, copying {args.src} through this host")
            dst = copy_via_download(fs, src, args.dst, move=(cmd == "move"))
        logger.info(f"{cmd}: {args.src} -> {dst.remote}")

    elif cmd == "touch":
        fs.new_object(args.path).set_mod_time(args.mtime)

    elif cmd == "mount":
        # fusepy is only needed for mounting
        from opendrive_fs.vfs import mount_daemon
        cache_dir = os.path.expanduser(args.cache_dir or config.cache_dir)
        os.makedirs(cache_dir, exist_ok=True)
        logger.info(f"Mounting {fs} at: {args.mount_point}")
        logger.info(f"Local Cache: {cache_dir}")
        logger.info("Press Ctrl+C to stop.")
        try:
            mount_daemon(fs, args.mount_point, cache_dir)
        except KeyboardInterrupt:
            logger.info("\nStopping...")
        except RuntimeError as e:
            logger.error(f"FUSE Error: {e}")
            logger.info(f"Try running: fusermount -u {args.mount_point}")
            return 1
    return 0


def main(argv=None):
    args = build_parser().parse_args(argv)
    configure_logging(args.verbose)

    if args.command == "obscure":
        print(obscure(args.password))
        return 0

    try:
        return run(args, ConfigManager(args.config))
    except SetupError as e:
        logger.error(f"Setup Error: {e}")
        return 2
    except OpenDriveError as e:
        logger.error(f"{args.command} failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
