#!/usr/bin/env python3
"""
ISS Flyover Lookup - Main Script
Prints the next ISS passes over wherever this machine appears to be.

This is the main script - just run: python iss_passes.py
"""

import asyncio
import configparser
import logging
import sys

import pytz
import requests

from iss_flyover import FlyoverError, build_orchestrator, load_config, print_pass_times, single_line

logger = logging.getLogger(__name__)


async def run(config, session):
    """Run the lookup chain and print one line per pass"""
    orchestrator = build_orchestrator(config, session)
    passes = await orchestrator.next_passes()
    print_pass_times(passes, config.local_tz)
    return passes


def main():
    """Main function"""
    try:
        config = load_config()
        # Log to stderr so stdout only carries the pass lines
        logging.basicConfig(level=config.log_level, format='%(asctime)s - %(levelname)s - %(message)s')
    except pytz.UnknownTimeZoneError as e:
        print(f"Error: unknown timezone in config.ini: {e}")
        return 1
    except (ValueError, configparser.Error) as e:
        print(f"Error: invalid config.ini: {single_line(e)}")
        return 1

    with requests.Session() as session:
        try:
            asyncio.run(run(config, session))
        except FlyoverError as e:
            logger.debug(f"Lookup failed while {e.stage}")
            print("It didn't work!", e)
            return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
