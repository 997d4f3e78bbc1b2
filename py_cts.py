import argparse
import datetime
import logging
import sys

from cts_core.config import DEFAULT_REMOTE_URL
from cts_core.errors import CtsError
from cts_core.remote import create_repository
from cts_core.workspace import Workspace

logger = logging.getLogger("cts")


def cmd_init(args):
    workspace = Workspace.init(args.path, args.remote, args.repository, branch=args.branch)
    print(f"Initialized empty cts repository in {workspace.cts_dir}")


def cmd_create(args):
    try:
        workspace = Workspace.find()
    except CtsError:
        workspace = None
    url = args.remote or (workspace.config.remote_url if workspace else DEFAULT_REMOTE_URL)
    repo = create_repository(url, args.name, args.description or "", args.branch)
    print(f"Created repository {repo['name']} ({repo['id']})")
    if args.link and workspace is not None:
        workspace.config.set("remote.url", url)
        workspace.config.set("remote.repository", repo["id"])
        print(f"Linked {workspace.root} to {repo['id']}")


def cmd_config(args):
    config = Workspace.find().config
    if args.value is None:
        value = config.get(args.key)
        if value is None:
            return 1
        print(value)
    else:
        config.set(args.key, args.value)


def cmd_add(args):
    for path in Workspace.find().add(*args.files):
        logger.debug("added %s", path)


def cmd_rm(args):
    for path in Workspace.find().remove(*args.files, cached=args.cached):
        print(f"rm '{path}'")


def cmd_reset(args):
    for path in Workspace.find().unstage(*args.files):
        print(f"Unstaged '{path}'")


def cmd_commit(args):
    workspace = Workspace.find()
    digest = workspace.commit(args.message)
    print(f"[{workspace.branch} {digest[:7]}] {args.message.splitlines()[0] if args.message else ''}")


def cmd_log(args):
    for commit in Workspace.find().log(args.limit):
        when = datetime.datetime.fromtimestamp(commit.timestamp, tz=datetime.timezone.utc)
        print(f"commit {commit.digest}")
        print(f"Author: {commit.author}")
        print(f"Date:   {when:%Y-%m-%d %H:%M:%S %z}")
        print()
        for line in commit.message.splitlines():
            print(f"    {line}")
        print()


def cmd_status(args):
    status = Workspace.find().status()
    print(f"On branch {status.branch}")
    if status.head is None:
        print("\nNo commits yet")
    if status.staged:
        print("\nChanges to be committed:")
        for path, change in status.staged.items():
            print(f"\t{change + ':':<10} {path}")
    if status.unstaged:
        print("\nChanges not staged for commit:")
        for path, change in status.unstaged.items():
            print(f"\t{change + ':':<10} {path}")
    if status.untracked:
        print("\nUntracked files:")
        for path in status.untracked:
            print(f"\t{path}")
    if status.clean and not status.untracked:
        print("nothing to commit, working tree clean")


def cmd_branch(args):
    workspace = Workspace.find()
    if args.name:
        workspace.create_branch(args.name, args.start)
        return
    current = workspace.branch
    for name in workspace.branches():
        print(f"{'*' if name == current else ' '} {name}")


def cmd_tag(args):
    workspace = Workspace.find()
    if args.name:
        workspace.create_tag(args.name, args.target)
        return
    for name in workspace.tags():
        print(name)


def cmd_push(args):
    result = Workspace.find().push(args.branch)
    if result.updated:
        print(f"{result.ref}: {(result.old or '(new)')[:7]}..{result.new[:7]} ({result.objects} objects)")
    else:
        print("Everything up-to-date")


def cmd_pull(args):
    result = Workspace.find().pull(args.branch)
    if result.updated:
        print(f"Fast-forward {(result.old or '(none)')[:7]}..{result.new[:7]} ({result.objects} objects)")
    else:
        print("Already up to date.")


def cmd_clone(args):
    workspace = Workspace.clone(args.path, args.remote, args.repository, branch=args.branch)
    print(f"Cloned {args.repository} into {workspace.root}")


def build_parser():
    parser = argparse.ArgumentParser(prog="cts", description="cts: content-addressed code storage client")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    p = subparsers.add_parser("init", help="Create an empty repository")
    p.add_argument("path", nargs="?", default=".")
    p.add_argument("-r", "--remote", help="Server API URL")
    p.add_argument("--repository", help="Server repository id")
    p.add_argument("-b", "--branch", default="main")
    p.set_defaults(func=cmd_init)

    p = subparsers.add_parser("create", help="Create a repository on the server")
    p.add_argument("name")
    p.add_argument("-d", "--description")
    p.add_argument("-r", "--remote", help="Server API URL")
    p.add_argument("-b", "--branch", default="main")
    p.add_argument("--link", action="store_true", help="Point the current workspace at the new repository")
    p.set_defaults(func=cmd_create)

    p = subparsers.add_parser("config", help="Get or set a configuration value")
    p.add_argument("key", help="section.option, e.g. user.name")
    p.add_argument("value", nargs="?")
    p.set_defaults(func=cmd_config)

    p = subparsers.add_parser("add", help="Stage files")
    p.add_argument("files", nargs="+")
    p.set_defaults(func=cmd_add)

    p = subparsers.add_parser("rm", help="Stage file removals")
    p.add_argument("files", nargs="+")
    p.add_argument("--cached", action="store_true", help="Keep the working copy")
    p.set_defaults(func=cmd_rm)

    p = subparsers.add_parser("reset", help="Unstage files")
    p.add_argument("files", nargs="+")
    p.set_defaults(func=cmd_reset)

    p = subparsers.add_parser("commit", help="Record staged changes")
    p.add_argument("-m", "--message", required=True)
    p.set_defaults(func=cmd_commit)

    p = subparsers.add_parser("log", help="Show history of the current branch")
    p.add_argument("-n", "--limit", type=int)
    p.set_defaults(func=cmd_log)

    p = subparsers.add_parser("status", help="Show the working tree status")
    p.set_defaults(func=cmd_status)

    p = subparsers.add_parser("branch", help="List or create branches")
    p.add_argument("name", nargs="?")
    p.add_argument("start", nargs="?", help="Commit the branch starts at")
    p.set_defaults(func=cmd_branch)

    p = subparsers.add_parser("tag", help="List or create tags")
    p.add_argument("name", nargs="?")
    p.add_argument("target", nargs="?", help="Commit to tag")
    p.set_defaults(func=cmd_tag)

    p = subparsers.add_parser("push", help="Send a branch to the server")
    p.add_argument("branch", nargs="?")
    p.set_defaults(func=cmd_push)

    p = subparsers.add_parser("pull", help="Fast-forward a branch from the server")
    p.add_argument("branch", nargs="?")
    p.set_defaults(func=cmd_pull)

    p = subparsers.add_parser("clone", help="Copy a server repository")
    p.add_argument("repository", help="Server repository id")
    p.add_argument("path", nargs="?", default=".")
    p.add_argument("-r", "--remote", default=DEFAULT_REMOTE_URL, help="Server API URL")
    p.add_argument("-b", "--branch")
    p.set_defaults(func=cmd_clone)

    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING,
                        format="%(levelname)s %(name)s: %(message)s")
    try:
        return args.func(args) or 0
    except CtsError as exc:
        print(f"fatal: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
