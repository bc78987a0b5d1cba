"""
xetpl CLI Main Module
=====================

Main CLI entry point with all commands.
"""

from __future__ import annotations

import argparse
import sys
from typing import List, Optional

from xetpl import __version__
from xetpl.core.config import Config
from xetpl.engine.errors import TemplateError
from xetpl.utils.logger import configure_logging


def create_parser() -> argparse.ArgumentParser:
    """Create argument parser."""
    parser = argparse.ArgumentParser(
        prog="xetpl",
        description="xetpl template compiler",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  xetpl compile skins/default/list.html        Print the compiled module
  xetpl render list.html --var title=Home      Render to stdout
  xetpl check skins/default/*.html --json      Report diagnostics
  xetpl clear-cache                            Remove compiled templates
        """,
    )

    parser.add_argument(
        "-v", "--version",
        action="version",
        version=f"xetpl {__version__}",
    )
    parser.add_argument(
        "-c", "--config",
        help="Config directory or Python config file",
    )
    parser.add_argument(
        "--root",
        help="Application root (template.root)",
    )
    parser.add_argument(
        "--lenient",
        action="store_true",
        help="Record compile errors instead of failing",
    )
    parser.add_argument(
        "--log-level",
        help="Log level (log.level)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    compile_parser = subparsers.add_parser(
        "compile",
        help="Print the Python module a template compiles to",
    )
    compile_parser.add_argument("file", help="Template file")

    render_parser = subparsers.add_parser(
        "render",
        help="Render a template",
    )
    render_parser.add_argument("file", help="Template file")
    render_parser.add_argument(
        "--var",
        action="append",
        default=[],
        metavar="NAME=VALUE",
        help="Template variable; VALUE is parsed as JSON when possible",
    )
    render_parser.add_argument(
        "--vars",
        metavar="JSON_FILE",
        help="JSON object of template variables",
    )

    check_parser = subparsers.add_parser(
        "check",
        help="Report compile diagnostics",
    )
    check_parser.add_argument("files", nargs="+", help="Template files")
    check_parser.add_argument(
        "--json",
        action="store_true",
        help="Print diagnostics as JSON",
    )

    subparsers.add_parser(
        "clear-cache",
        help="Remove compiled templates",
    )

    return parser


def load_config(parsed: argparse.Namespace) -> Config:
    """Configuration with command line overrides applied."""
    config = Config.load(parsed.config)
    if parsed.root:
        config.set("template.root", parsed.root)
    if parsed.lenient:
        config.set("template.strict", False)
    if parsed.log_level:
        config.set("log.level", parsed.log_level)
    return config


def cli(args: Optional[List[str]] = None) -> int:
    """
    Main CLI entry point.

    Args:
        args: Command line arguments (uses sys.argv if None)

    Returns:
        Exit code
    """
    parser = create_parser()
    parsed = parser.parse_args(args)

    if not parsed.command:
        parser.print_help()
        return 0

    handlers = {
        "compile": handle_compile,
        "render": handle_render,
        "check": handle_check,
        "clear-cache": handle_clear_cache,
    }

    try:
        config = load_config(parsed)
        configure_logging(config.get("log.level", "WARNING"), format=config.get("log.format", "text"))
        return handlers[parsed.command](parsed, config)
    except KeyboardInterrupt:
        print("\nAborted.")
        return 130
    except (TemplateError, OSError, ValueError, KeyError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def _handler(config: Config):
    from xetpl.engine.handler import TemplateHandler
    return TemplateHandler(config)


def handle_compile(args: argparse.Namespace, config: Config) -> int:
    """Handle compile command."""
    from xetpl.cli.commands.compile import compile_template
    return compile_template(_handler(config), args.file)


def handle_render(args: argparse.Namespace, config: Config) -> int:
    """Handle render command."""
    from xetpl.cli.commands.render import render_template
    return render_template(_handler(config), args.file, args.var, args.vars)


def handle_check(args: argparse.Namespace, config: Config) -> int:
    """Handle check command."""
    from xetpl.cli.commands.check import check_templates
    return check_templates(_handler(config), args.files, as_json=args.json)


def handle_clear_cache(args: argparse.Namespace, config: Config) -> int:
    """Handle clear-cache command."""
    from xetpl.cli.commands.cache import clear_cache
    return clear_cache(_handler(config))


def main() -> None:
    """Main entry point."""
    sys.exit(cli())


if __name__ == "__main__":
    main()
