#!/usr/bin/env python3
"""
Super Token Scorer - Main Entry Point
Scores a Solana token across on-chain security checks and third-party data providers
"""

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

import orjson
from dotenv import load_dotenv

from config.config_manager import ConfigManager
from core.engine import TokenRiskEngine
from monitoring.logger import StructuredLogger
from utils.errors import AnalysisError, ConfigurationError, InvalidTokenAddressError
from utils.helpers import is_valid_solana_address

# Load environment variables
load_dotenv()

logger = logging.getLogger("SuperTokenScorer")


def parse_arguments(argv: Optional[List[str]] = None):
    """Parse command line arguments"""
    parser = argparse.ArgumentParser(
        prog="super-token-scorer",
        description="Super Token Scorer - Solana token risk analysis"
    )
    parser.add_argument(
        '--config',
        default=None,
        help='Path to YAML configuration file'
    )
    parser.add_argument(
        '--debug',
        action='store_true',
        help='Enable debug logging'
    )

    subparsers = parser.add_subparsers(dest='command', required=True)

    analyze = subparsers.add_parser('analyze', help='Analyze one token')
    analyze.add_argument('address', help='Token mint address (base58)')
    analyze.add_argument(
        '--force-refresh',
        action='store_true',
        help='Ignore cached results and recompute'
    )
    analyze.add_argument(
        '--summary',
        action='store_true',
        help='Print only the summary instead of the full result'
    )
    analyze.add_argument(
        '--progress',
        action='store_true',
        help='Report pipeline phases on stderr'
    )

    return parser.parse_args(argv)


def _print_phase(phase: str) -> None:
    print(f"[{phase}]", file=sys.stderr)


async def run_analyze(args) -> int:
    if not is_valid_solana_address(args.address):
        raise InvalidTokenAddressError(args.address)

    config = ConfigManager(args.config).load()
    structured_logger = StructuredLogger.from_config(config.logging)
    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)

    async with TokenRiskEngine.from_config(config) as engine:
        try:
            result = await engine.analyze_token(
                args.address,
                force_refresh=args.force_refresh,
                on_progress=_print_phase if args.progress else None,
            )
        except AnalysisError as e:
            structured_logger.log_error(e, {'function': 'analyze_token', 'token': args.address})
            print(f"Analysis failed: {e}", file=sys.stderr)
            return 1

    structured_logger.log_analysis(result)
    payload = result.summary() if args.summary else result.model_dump(mode='json')
    sys.stdout.write(orjson.dumps(payload, option=orjson.OPT_INDENT_2).decode() + "\n")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point"""
    args = parse_arguments(argv)
    try:
        if args.command == 'analyze':
            return asyncio.run(run_analyze(args))
    except InvalidTokenAddressError as e:
        print(str(e), file=sys.stderr)
        return 2
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2
    except KeyboardInterrupt:
        return 130
    return 1


if __name__ == "__main__":
    sys.exit(main())
