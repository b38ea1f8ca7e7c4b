"""
kube-remedy MCP Server CLI

Usage:
    kuberemedy-mcp [--transport stdio|http|sse] [--host HOST] [--port PORT] [-v]

Example:
    kuberemedy-mcp --transport http --host 0.0.0.0 --port 8003
"""
import argparse
import logging
import sys

from kuberemedy.core.log import setup_logging
from kuberemedy.mcp.server import start_mcp_server


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='kube-remedy MCP Server')
    parser.add_argument(
        '--transport',
        choices=['stdio', 'http', 'sse'],
        default='stdio',
        help='MCP transport (default: stdio)'
    )
    parser.add_argument(
        '--host',
        default='127.0.0.1',
        help='Host to bind the server to (default: 127.0.0.1)'
    )
    parser.add_argument(
        '--port',
        type=int,
        default=8003,
        help='Port to bind the server to (default: 8003)'
    )
    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable verbose logging'
    )
    return parser


def main(argv=None):
    """Main CLI entry point"""
    args = build_parser().parse_args(argv)

    setup_logging("DEBUG" if args.verbose else None)
    logger = logging.getLogger(__name__)

    try:
        start_mcp_server(transport=args.transport, host=args.host, port=args.port)
    except KeyboardInterrupt:
        logger.info("Received interrupt signal, shutting down...")
    except Exception as e:
        logger.error("Failed to start MCP server: %s", e)
        sys.exit(1)


if __name__ == '__main__':
    main()
