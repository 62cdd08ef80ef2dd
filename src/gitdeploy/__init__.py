"""
gitdeploy - two-hop rsync deployment

Pushes a project tree to a master staging server through an SSH tunnel, then
has the master sync it to every production server in parallel and report
back per host.
"""
import argparse
import sys

__version__ = "1.0.0"


def main(argv=None):
    """Main CLI entry point"""
    from gitdeploy.commands import check, sync

    parser = argparse.ArgumentParser(
        prog='gitdeploy',
        description='gitdeploy: two-hop rsync deployment',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog='''
Examples:
  gitdeploy sync --config deploy.yaml                  # source -> master -> servers
  gitdeploy sync --repo www --stage prod \\
      --source-dir ./build --rsync-module www --rsync-user deploy \\
      --master stage1 --servers web1,web2              # same, without a config file
  gitdeploy sync --config deploy.yaml --dry-run        # show what would change
  gitdeploy check --config deploy.yaml                 # pre-flight check
        '''
    )
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')

    subparsers = parser.add_subparsers(dest='command', help='Command to execute')

    # Sync command
    sync_parser = subparsers.add_parser('sync', help='Deploy a tree to the master and its servers')
    sync.setup_parser(sync_parser)

    # Check command
    check_parser = subparsers.add_parser('check', help='Pre-flight deployment check')
    check.setup_parser(check_parser)

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    # Dispatch to command handler
    try:
        if args.command == 'sync':
            sys.exit(sync.execute(args))
        elif args.command == 'check':
            sys.exit(check.execute(args))
    except KeyboardInterrupt:
        print("\n\nInterrupted by user")
        sys.exit(130)
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        import traceback
        traceback.print_exc()
        sys.exit(1)
