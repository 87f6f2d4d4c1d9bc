"""
Command line entry point for the WezTerm host manager.

Each subcommand prints its result as JSON on stdout and exits 0 on success,
1 on failure, so shell scripts and the web UI can call it directly.
"""
import argparse
import json
import sys
from typing import List, Optional

from .app import ManagerFlaskApp
from .models.errors import CommandResult
from .models.settings import ManagerSettings
from .services.command_service import CommandService
from .services.logging_service import LoggingService


class ManagerApplication:
    """Loads settings, configures logging and wires the command service."""

    def __init__(self, config_path: Optional[str] = None, verbose: bool = False):
        self.settings = ManagerSettings.from_file(config_path)
        if verbose:
            self.settings.log_level = "DEBUG"
        self.logging_service = LoggingService(self.settings)
        self.commands = CommandService.from_settings(self.settings, self.logging_service)

    def dispatch(self, args: argparse.Namespace) -> CommandResult:
        commands = self.commands
        handlers = {
            'start': commands.start,
            'stop': commands.stop,
            'restart': commands.restart,
            'status': commands.status,
            'enable': lambda: commands.set_autostart(True),
            'disable': lambda: commands.set_autostart(False),
            'init-ca': commands.init_ca,
            'generate': lambda: commands.generate_cert(args.name),
            'revoke': lambda: commands.revoke_cert(args.name),
            'list': commands.list_certs,
            'info': lambda: commands.cert_info(args.name),
            'bundle': lambda: commands.download_cert(args.name, args.output or f"wezterm-certs-{args.name}.zip"),
            'get-config': commands.get_config,
            'save-config': lambda: commands.save_config(_config_fields(args)),
            'install': lambda: commands.install(args.version),
            'logs': lambda: commands.get_logs(args.lines),
        }
        return handlers[args.command]()

    def serve(self, host: str, port: int, debug: bool = False) -> None:
        ManagerFlaskApp(self.commands).run(host=host, port=port, debug=debug)


def _config_fields(args: argparse.Namespace) -> dict:
    fields = {}
    for option, key in (('address', 'address'), ('port', 'port'), ('log_level', 'log_level'),
                        ('service', 'autostart')):
        value = getattr(args, option)
        if value is not None:
            fields[key] = value
    return fields


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='wezterm-manager', description='WezTerm Server host manager')
    parser.add_argument('--config', '-c', help='Manager settings file path')
    parser.add_argument('--verbose', '-v', action='store_true', help='Enable debug logging')
    sub = parser.add_subparsers(dest='command', required=True)

    sub.add_parser('start', help='Start the WezTerm Server')
    sub.add_parser('stop', help='Stop the WezTerm Server')
    sub.add_parser('restart', help='Restart the WezTerm Server')
    sub.add_parser('status', help='Show service status')
    sub.add_parser('enable', help='Enable service at boot')
    sub.add_parser('disable', help='Disable service at boot')
    sub.add_parser('init-ca', help='Initialize Certificate Authority and server certificate')

    for name, text in (('generate', 'Generate a new client certificate'),
                       ('revoke', 'Revoke a client certificate'),
                       ('info', 'Show certificate details (ca, server or a client name)')):
        command = sub.add_parser(name, help=text)
        command.add_argument('name')

    sub.add_parser('list', help='List all certificates')

    bundle = sub.add_parser('bundle', help='Create downloadable bundle for a client')
    bundle.add_argument('name')
    bundle.add_argument('--output', '-o', help='Archive path (default: ./wezterm-certs-<name>.zip)')

    sub.add_parser('get-config', help='Show the saved server configuration')
    save = sub.add_parser('save-config', help='Validate and save server configuration')
    save.add_argument('--address')
    save.add_argument('--port')
    save.add_argument('--log-level', dest='log_level')
    save.add_argument('--service', choices=['enable', 'disable'])

    install = sub.add_parser('install', help='Install or update WezTerm')
    install.add_argument('version', nargs='?', default='latest')

    logs = sub.add_parser('logs', help='Show recent server log lines')
    logs.add_argument('--lines', '-n', type=int, default=100)

    serve = sub.add_parser('serve', help='Run the management HTTP API')
    serve.add_argument('--host', default='127.0.0.1', help='Host to bind to (default: 127.0.0.1)')
    serve.add_argument('--port', type=int, default=8765, help='Port to bind to (default: 8765)')
    serve.add_argument('--debug', action='store_true', help='Enable debug mode')

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the command line."""
    args = build_parser().parse_args(argv)

    try:
        app = ManagerApplication(config_path=args.config, verbose=args.verbose)
    except ValueError as e:
        print(json.dumps({'success': False, 'message': f'Invalid manager settings: {e}'}))
        return 1

    if args.command == 'serve':
        try:
            app.serve(args.host, args.port, args.debug)
        except KeyboardInterrupt:
            print("\nShutdown requested by user", file=sys.stderr)
        return 0

    result = app.dispatch(args)
    print(json.dumps(result.to_dict(), default=str))
    return 0 if result.success else 1


if __name__ == '__main__':
    sys.exit(main())
